from __future__ import annotations

import logging
from typing import Any, Protocol

import psycopg
import requests
from psycopg import sql
from psycopg.rows import dict_row
from pydantic import BaseModel

from config import Settings

logger = logging.getLogger("studyai.db")

PLAN_FREE = "free"
PLAN_PRO = "pro"
PLANS = (PLAN_FREE, PLAN_PRO)


class UserProfile(BaseModel):
    id: str
    email: str
    plan: str | None = None


class ProfileStoreError(RuntimeError):
    pass


class ProfileStore(Protocol):
    def find_by_email(self, email: str) -> list[UserProfile]:
        ...

    def update_plan(self, profile_id: str, plan: str) -> None:
        ...


def _profile_from_row(row: dict[str, Any]) -> UserProfile:
    return UserProfile(id=str(row["id"]), email=row["email"], plan=row.get("plan"))


class SupabaseProfileStore:
    """Profile access through the PostgREST API using the service-role key.

    The service-role key bypasses row-level security, so this store must only
    be used from trusted server code.
    """

    def __init__(self, url: str, service_key: str, *, table: str = "profiles", timeout: int = 15) -> None:
        self._base_url = f"{url.rstrip('/')}/rest/v1/{table}"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout

    def _request(
        self,
        method: str,
        params: dict[str, str],
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        try:
            resp = requests.request(
                method,
                self._base_url,
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.exception("Profile store unreachable.")
            raise ProfileStoreError("Profile store unreachable.") from exc
        if resp.status_code >= 400:
            logger.error("Profile store error %s: %s", resp.status_code, resp.text)
            raise ProfileStoreError(f"Profile store returned {resp.status_code}.")
        return resp

    def find_by_email(self, email: str) -> list[UserProfile]:
        resp = self._request(
            "GET",
            {"select": "id,email,plan", "email": f"eq.{email}", "order": "id.asc"},
        )
        try:
            rows = resp.json()
        except ValueError as exc:
            raise ProfileStoreError("Profile store returned invalid JSON.") from exc
        if not isinstance(rows, list):
            raise ProfileStoreError("Profile store returned an unexpected payload.")
        return [_profile_from_row(row) for row in rows]

    def update_plan(self, profile_id: str, plan: str) -> None:
        self._request(
            "PATCH",
            {"id": f"eq.{profile_id}"},
            json={"plan": plan},
            headers={"Prefer": "return=minimal"},
        )


class PostgresProfileStore:
    def __init__(self, database_url: str, *, table: str = "profiles") -> None:
        self._database_url = database_url
        self._table = sql.Identifier(table)

    def get_connection(self):
        return psycopg.connect(self._database_url, row_factory=dict_row)

    def find_by_email(self, email: str) -> list[UserProfile]:
        query = sql.SQL("SELECT id, email, plan FROM {} WHERE email = %s ORDER BY id").format(self._table)
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (email,))
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            logger.exception("Profile lookup failed.")
            raise ProfileStoreError("Profile lookup failed.") from exc
        return [_profile_from_row(dict(row)) for row in rows]

    def update_plan(self, profile_id: str, plan: str) -> None:
        query = sql.SQL("UPDATE {} SET plan = %s WHERE id = %s").format(self._table)
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (plan, profile_id))
        except psycopg.Error as exc:
            logger.exception("Profile update failed.")
            raise ProfileStoreError("Profile update failed.") from exc


def build_profile_store(settings: Settings) -> ProfileStore:
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseProfileStore(
            settings.supabase_url,
            settings.supabase_service_role_key,
            table=settings.profiles_table,
            timeout=settings.store_timeout_seconds,
        )
    if settings.database_url:
        return PostgresProfileStore(settings.database_url, table=settings.profiles_table)
    raise RuntimeError("Profile store is not configured.")
