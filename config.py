from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

logger = logging.getLogger("studyai.config")


class Settings(BaseModel):
    signing_secret: str | None = None
    require_signature: bool = False
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    database_url: str | None = None
    profiles_table: str = "profiles"
    store_timeout_seconds: int = 15
    environment: str = "development"
    strict: bool = False
    log_level: str = "INFO"
    load_errors: list[str] = Field(default_factory=list)


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def _bool_env(name: str, default: str | None = None) -> bool:
    raw = _env(name, default)
    if raw is None:
        return False
    return raw.strip().lower() in {"1", "true", "yes"}


def _environment() -> str:
    return (_env("ENVIRONMENT", "development") or "development").strip().lower()


def _is_production() -> bool:
    return _environment() in {"production", "prod"}


def _strict_env() -> bool:
    if os.getenv("STRICT_ENV_VALIDATION") is not None:
        return _bool_env("STRICT_ENV_VALIDATION", "true")
    return _is_production()


def _require_signature() -> bool:
    if os.getenv("LEMON_SQUEEZY_REQUIRE_SIGNATURE") is not None:
        return _bool_env("LEMON_SQUEEZY_REQUIRE_SIGNATURE", "true")
    return _is_production()


def load_settings() -> Settings:
    """Read the process environment once and build the service settings.

    Unparseable values fall back to their defaults and are recorded in
    ``load_errors`` for validate_settings to report.
    """
    load_errors: list[str] = []
    try:
        store_timeout = int(_env("STORE_TIMEOUT_SECONDS", "15") or 15)
    except ValueError:
        load_errors.append("STORE_TIMEOUT_SECONDS must be an integer.")
        store_timeout = 15
    supabase_url = _env("SUPABASE_URL")
    return Settings(
        signing_secret=_env("LEMON_SQUEEZY_SIGNING_SECRET"),
        require_signature=_require_signature(),
        supabase_url=supabase_url.rstrip("/") if supabase_url else None,
        supabase_service_role_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
        database_url=_env("DATABASE_URL"),
        profiles_table=(_env("PROFILES_TABLE", "profiles") or "profiles").strip(),
        store_timeout_seconds=store_timeout,
        environment=_environment(),
        strict=_strict_env(),
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").strip().upper(),
        load_errors=load_errors,
    )


def validate_settings(settings: Settings) -> None:
    errors: list[str] = list(settings.load_errors)
    warnings: list[str] = []

    if not settings.signing_secret:
        message = "LEMON_SQUEEZY_SIGNING_SECRET is required."
        if settings.strict:
            errors.append(message)
        else:
            warnings.append(message + " Webhooks will be rejected with 500.")
    if not settings.require_signature:
        warnings.append("Unsigned webhooks are accepted; set LEMON_SQUEEZY_REQUIRE_SIGNATURE=true.")

    has_rest = bool(settings.supabase_url and settings.supabase_service_role_key)
    if settings.supabase_url and not settings.supabase_service_role_key:
        errors.append("SUPABASE_SERVICE_ROLE_KEY is required when SUPABASE_URL is set.")
    elif not has_rest and not settings.database_url:
        errors.append("SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY or DATABASE_URL is required.")

    if settings.store_timeout_seconds <= 0:
        errors.append("STORE_TIMEOUT_SECONDS must be positive.")
    if not isinstance(logging.getLevelName(settings.log_level), int):
        errors.append(f"LOG_LEVEL {settings.log_level!r} is not a logging level.")

    if errors:
        raise RuntimeError("Config errors: " + "; ".join(errors))
    for warning in warnings:
        logger.warning(warning)
