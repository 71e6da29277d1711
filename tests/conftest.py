"""Shared fixtures for the webhook test suite."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from config import Settings
from db import ProfileStoreError, UserProfile
from main import create_app

SECRET = "test-signing-secret"


class FakeProfileStore:
    """In-memory profile store that records every call."""

    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self.profiles = {p.id: p for p in profiles or []}
        self.lookups: list[str] = []
        self.updates: list[tuple[str, str]] = []
        self.fail_lookup = False
        self.fail_update = False

    def find_by_email(self, email: str) -> list[UserProfile]:
        self.lookups.append(email)
        if self.fail_lookup:
            raise ProfileStoreError("lookup exploded")
        return [p for p in self.profiles.values() if p.email == email]

    def update_plan(self, profile_id: str, plan: str) -> None:
        if self.fail_update:
            raise ProfileStoreError("update exploded")
        self.updates.append((profile_id, plan))
        self.profiles[profile_id] = self.profiles[profile_id].model_copy(update={"plan": plan})

    def plan_of(self, email: str) -> str | None:
        for profile in self.profiles.values():
            if profile.email == email:
                return profile.plan
        return None


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def make_body(event_name: Any = "subscription_created", **attributes: Any) -> bytes:
    if not attributes:
        attributes = {"user_email": "a@x.com"}
    payload = {
        "meta": {"event_name": event_name, "custom_data": {}},
        "data": {"type": "subscriptions", "id": "1", "attributes": attributes},
    }
    return json.dumps(payload).encode()


@pytest.fixture()
def store() -> FakeProfileStore:
    return FakeProfileStore(
        [
            UserProfile(id="u-1", email="a@x.com", plan="free"),
            UserProfile(id="u-2", email="b@x.com", plan="pro"),
        ]
    )


@pytest.fixture()
def settings() -> Settings:
    return Settings(signing_secret=SECRET, require_signature=False)


@pytest.fixture()
def client(settings: Settings, store: FakeProfileStore) -> TestClient:
    return TestClient(create_app(settings, store))


@pytest.fixture()
def post_event(client: TestClient):
    """Post a body to the webhook, signing it unless a signature is given."""

    def _post(body: bytes, signature: str | None = "auto", path: str = "/"):
        headers = {"Content-Type": "application/json"}
        if signature == "auto":
            headers["X-Signature"] = sign(body)
        elif signature is not None:
            headers["X-Signature"] = signature
        return client.post(path, content=body, headers=headers)

    return _post
