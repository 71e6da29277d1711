from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response

from config import Settings, load_settings, validate_settings
from db import ProfileStore, build_profile_store
from webhook import WebhookReceiver

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("studyai")

WEBHOOK_PATHS = ("/", "/api/payments/lemon-squeezy/webhook")


def create_app(settings: Settings | None = None, store: ProfileStore | None = None) -> FastAPI:
    """Build the webhook service.

    Settings are read from the environment when not given, and the profile
    store is chosen from them when not injected. Serve with
    ``uvicorn main:create_app --factory``.
    """
    if settings is None:
        settings = load_settings()
        validate_settings(settings)
    logging.getLogger("studyai").setLevel(settings.log_level)
    if store is None:
        store = build_profile_store(settings)

    receiver = WebhookReceiver(settings, store)
    app = FastAPI(title="StudyAI Billing Webhooks")

    @app.get("/health")
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    async def lemon_squeezy_webhook(request: Request) -> Response:
        return await receiver.handle(request)

    for path in WEBHOOK_PATHS:
        app.add_api_route(path, lemon_squeezy_webhook, methods=["POST", "OPTIONS"])

    logger.info("Lemon Squeezy webhook ready (environment=%s).", settings.environment)
    return app
