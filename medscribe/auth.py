"""Authentication helpers for the MedScribe service."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

import jwt
from passlib.context import CryptContext

from medscribe.config import Settings, get_settings
from medscribe.errors import AuthError, SessionExpired
from medscribe.time_utils import utc_now

# Password hashing context
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a plaintext password using a secure algorithm."""

    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    """Verify a plaintext password against a stored hash."""

    if not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


def create_access_token(user: Mapping[str, Any], settings: Optional[Settings] = None) -> str:
    """Create a signed JWT for ``user`` valid for the configured session length."""

    settings = settings or get_settings()
    payload = {
        "sub": user["username"],
        "uid": user["id"],
        "role": user.get("role"),
        "name": user.get("name") or user["username"],
        "iat": utc_now(),
        "exp": utc_now() + timedelta(hours=settings.session_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise SessionExpired() from exc
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid or expired token") from exc


__all__ = [
    "pwd_context",
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
]
