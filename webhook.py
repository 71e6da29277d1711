"""Lemon Squeezy webhook receiver.

Verifies the ``X-Signature`` HMAC over the raw body, classifies the billing
event and overwrites the ``plan`` of the profile matching the customer email.
Store calls run in worker threads so a slow lookup never stalls other
deliveries. Plan writes are last-write-wins: two conflicting deliveries for
the same email race at the store and the later write is kept.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from auth import verify_signature
from config import Settings
from db import PLAN_FREE, PLAN_PRO, ProfileStore, ProfileStoreError, UserProfile

logger = logging.getLogger("studyai.webhook")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-signature",
}

UPGRADE_EVENTS = frozenset(
    {
        "order_created",
        "subscription_created",
        "subscription_payment_success",
        "subscription_plan_changed",
    }
)

DOWNGRADE_EVENTS = frozenset(
    {
        "subscription_cancelled",
        "subscription_payment_failed",
    }
)


class WebhookEvent(BaseModel):
    event_name: str | None = None
    customer_email: str | None = None


class WebhookError(Exception):
    """A rejection with the status code and public message sent to the provider."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _json_response(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_webhook_event(raw_body: bytes) -> WebhookEvent:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookError(400, "Invalid JSON payload") from exc

    payload = _object(payload)
    meta = _object(payload.get("meta"))
    attributes = _object(_object(payload.get("data")).get("attributes"))
    return WebhookEvent(
        event_name=_text(meta.get("event_name")),
        customer_email=_text(attributes.get("user_email")) or _text(attributes.get("customer_email")),
    )


def classify_event(event_name: str | None) -> str | None:
    """Map an event name to the target plan, or None when the event is not handled."""
    if event_name in UPGRADE_EVENTS:
        return PLAN_PRO
    if event_name in DOWNGRADE_EVENTS:
        return PLAN_FREE
    return None


class WebhookReceiver:
    def __init__(self, settings: Settings, store: ProfileStore) -> None:
        self._settings = settings
        self._store = store

    async def handle(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        try:
            return await self._process(request)
        except WebhookError as exc:
            return _json_response(exc.status_code, {"error": exc.message})
        except Exception:
            logger.exception("Webhook processing error.")
            return _json_response(500, {"error": "Internal server error"})

    async def _process(self, request: Request) -> Response:
        secret = self._settings.signing_secret
        if not secret:
            logger.error("Missing LEMON_SQUEEZY_SIGNING_SECRET.")
            raise WebhookError(500, "Server configuration error")

        raw_body = await request.body()
        self._verify(raw_body, request.headers.get("x-signature"), secret)

        event = parse_webhook_event(raw_body)
        logger.info("Received webhook event: %s for email: %s", event.event_name, event.customer_email)
        if not event.customer_email:
            logger.error("No email found in webhook payload.")
            raise WebhookError(400, "No email in payload")

        plan = classify_event(event.event_name)
        if plan is None:
            logger.info("Ignoring event type: %s", event.event_name)
            return _json_response(200, {"success": True, "message": "Event type not handled"})

        profile = await self._find_profile(event.customer_email)
        try:
            await asyncio.to_thread(self._store.update_plan, profile.id, plan)
        except ProfileStoreError as exc:
            logger.error("Error updating user plan for %s: %s", profile.id, exc)
            raise WebhookError(500, "Failed to update user") from exc

        logger.info("Updated user %s to plan: %s", event.customer_email, plan)
        return _json_response(200, {"success": True})

    def _verify(self, raw_body: bytes, signature: str | None, secret: str) -> None:
        if not signature:
            if self._settings.require_signature:
                logger.error("Rejected unsigned webhook.")
                raise WebhookError(401, "Missing signature")
            logger.warning("Webhook received without X-Signature; verification skipped.")
            return
        if not verify_signature(raw_body, signature, secret):
            logger.error("Invalid webhook signature.")
            raise WebhookError(401, "Invalid signature")

    async def _find_profile(self, email: str) -> UserProfile:
        try:
            profiles = await asyncio.to_thread(self._store.find_by_email, email)
        except ProfileStoreError as exc:
            logger.error("Error fetching user profile for %s: %s", email, exc)
            raise WebhookError(500, "Database error") from exc
        if not profiles:
            logger.error("No user found with email: %s", email)
            raise WebhookError(404, "User not found")
        if len(profiles) > 1:
            logger.error("Found %d profiles sharing email %s; refusing to pick one.", len(profiles), email)
            raise WebhookError(500, "Database error")
        return profiles[0]
