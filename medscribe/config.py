"""Runtime configuration resolved from the environment.

Values are read once per process through :func:`get_settings`.  A ``.env``
file in the working directory is honoured.
Tests call ``get_settings.cache_clear()`` after patching the environment.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from medscribe.errors import ConfigurationError

# Load environment variables from a .env file if present
load_dotenv()

APP_NAME = "MedScribe"
SERVICE_NAME = "Medical Scribe API"

_ENV_DEV_VALUES = {"development", "dev", "local", "test"}
_TRUTHY = {"1", "true", "yes"}

# Generated once per process when running without an explicit JWT secret in
# development so tokens stay valid across requests.
_DEV_JWT_SECRET = secrets.token_urlsafe(48)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in _TRUTHY


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be a number; got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    log_level: str = "INFO"
    jwt_secret: str = _DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    session_hours: float = 12.0
    org_domain: str = "medscribe.health"
    super_admin_marker: str = "superadmin"
    openai_endpoint: Optional[str] = None
    openai_key: Optional[str] = None
    openai_deployment: str = "gpt-4"
    openai_api_version: str = "2024-08-01-preview"
    openai_timeout: float = 30.0
    use_offline_model: bool = False
    speech_key: Optional[str] = None
    speech_region: Optional[str] = None
    bootstrap_admin_username: str = "admin"
    bootstrap_admin_password: Optional[str] = None
    bootstrap_admin_email: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.environment in _ENV_DEV_VALUES

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_endpoint and self.openai_key)

    @property
    def speech_configured(self) -> bool:
        return bool(self.speech_key and self.speech_region)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the active settings derived from the environment."""

    environment = (_env("ENVIRONMENT", "development") or "development").lower()
    jwt_secret = _env("JWT_SECRET")
    if not jwt_secret:
        if environment not in _ENV_DEV_VALUES:
            raise ConfigurationError("JWT_SECRET must be set outside development")
        jwt_secret = _DEV_JWT_SECRET

    return Settings(
        environment=environment,
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        jwt_secret=jwt_secret,
        session_hours=_env_float("MEDSCRIBE_SESSION_HOURS", 12.0),
        org_domain=(_env("MEDSCRIBE_ORG_DOMAIN", "medscribe.health") or "").lower(),
        super_admin_marker=(_env("MEDSCRIBE_SUPER_ADMIN_MARKER", "superadmin") or "").lower(),
        openai_endpoint=_env("AZURE_OPENAI_ENDPOINT") or _env("OPENAI_ENDPOINT"),
        openai_key=_env("AZURE_OPENAI_KEY") or _env("OPENAI_KEY"),
        openai_deployment=_env("AZURE_OPENAI_DEPLOYMENT") or _env("OPENAI_DEPLOYMENT") or "gpt-4",
        openai_api_version=_env("AZURE_OPENAI_API_VERSION")
        or _env("OPENAI_API_VERSION")
        or "2024-08-01-preview",
        openai_timeout=_env_float("AZURE_OPENAI_TIMEOUT", 30.0),
        use_offline_model=_env_flag("USE_OFFLINE_MODEL"),
        speech_key=_env("AZURE_SPEECH_KEY"),
        speech_region=_env("AZURE_SPEECH_REGION"),
        bootstrap_admin_username=(_env("MEDSCRIBE_ADMIN_USERNAME", "admin") or "admin").lower(),
        bootstrap_admin_password=_env("MEDSCRIBE_ADMIN_PASSWORD"),
        bootstrap_admin_email=_env("MEDSCRIBE_ADMIN_EMAIL"),
    )


__all__ = ["APP_NAME", "SERVICE_NAME", "Settings", "get_settings"]
