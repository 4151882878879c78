"""User records: creation, credential checks and the bootstrap account."""

from __future__ import annotations

import secrets
from typing import Any, Dict, List, Mapping, Optional

import structlog

from medscribe.auth import hash_password, verify_password
from medscribe.config import Settings, get_settings
from medscribe.errors import (
    AuthenticationFailed,
    AuthFailure,
    EntityExists,
    EntityNotFound,
    ValidationError,
)
from medscribe.roles import Role, parse_role
from medscribe.sanitizer import sanitize_text
from medscribe.table_store import PARTITION_KEY, ROW_KEY, TableStore
from medscribe.time_utils import isoformat_z, utc_now

logger = structlog.get_logger(__name__)

USERS_TABLE = "users"
USER_PARTITION = "user"

_CREDENTIAL_FIELDS = {"passwordHash", "password", "salt"}
_EDITABLE_FIELDS = ("name", "email", "role", "specialty", "isActive")
MIN_PASSWORD_LENGTH = 6


def public_user(entity: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``entity`` without credential fields or storage keys."""

    return {
        k: v
        for k, v in entity.items()
        if k not in _CREDENTIAL_FIELDS and k not in (PARTITION_KEY, ROW_KEY)
    }


def _normalise_username(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Username is required")
    return value.strip().lower()


def _check_password(value: Any) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return value


def _check_role(value: Any) -> str:
    role = parse_role(value)
    if role is None:
        raise ValidationError(f"Invalid role: {value!r}")
    return role.value


class UserRepository:
    def __init__(self, store: TableStore) -> None:
        self.store = store

    def list_users(self, limit: Optional[int] = 100) -> List[Dict[str, Any]]:
        return [public_user(u) for u in self.store.list(USER_PARTITION, limit=limit)]

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return public_user(self._get(user_id))

    def _get(self, user_id: str) -> Dict[str, Any]:
        return self.store.get(USER_PARTITION, str(user_id).lower())

    def create_user(self, data: Mapping[str, Any], *, created_by: Optional[str] = None) -> Dict[str, Any]:
        username = _normalise_username(data.get("username"))
        password = _check_password(data.get("password"))
        name = sanitize_text(str(data.get("name") or "").strip())
        if not name:
            raise ValidationError("Name is required")
        entity: Dict[str, Any] = {
            PARTITION_KEY: USER_PARTITION,
            ROW_KEY: username,
            "id": username,
            "username": username,
            "name": name,
            "email": (data.get("email") or "").strip().lower() or None,
            "role": _check_role(data.get("role") or Role.DOCTOR.value),
            "specialty": data.get("specialty"),
            "passwordHash": hash_password(password),
            "isActive": bool(data.get("isActive", True)),
            "createdAt": isoformat_z(utc_now()),
            "createdBy": created_by,
        }
        try:
            created = self.store.create(entity)
        except EntityExists:
            raise EntityExists(f"User {username!r} already exists") from None
        logger.info("user_created", user_id=username, role=entity["role"], created_by=created_by)
        return public_user(created)

    def update_user(self, user_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        current = self._get(user_id)
        update: Dict[str, Any] = {
            PARTITION_KEY: USER_PARTITION,
            ROW_KEY: current[ROW_KEY],
        }
        for field in _EDITABLE_FIELDS:
            if field in changes:
                update[field] = changes[field]
        if "role" in update:
            update["role"] = _check_role(update["role"])
        if "name" in update:
            update["name"] = sanitize_text(str(update["name"] or "").strip()) or current.get("name")
        if "isActive" in update:
            update["isActive"] = bool(update["isActive"])
        if changes.get("password"):
            update["passwordHash"] = hash_password(_check_password(changes["password"]))
        update["updatedAt"] = isoformat_z(utc_now())
        return public_user(self.store.upsert(update, merge=True))

    def deactivate_user(self, user_id: str, *, acting_user_id: Optional[str] = None) -> None:
        """Mark the user inactive; users cannot deactivate themselves."""

        key = str(user_id).lower()
        if acting_user_id is not None and key == str(acting_user_id).lower():
            raise ValidationError("You cannot delete your own account")
        self._get(key)
        self.store.upsert(
            {
                PARTITION_KEY: USER_PARTITION,
                ROW_KEY: key,
                "isActive": False,
                "deactivatedAt": isoformat_z(utc_now()),
            }
        )
        logger.info("user_deactivated", user_id=key, by=acting_user_id)

    def change_password(
        self,
        user_id: str,
        new_password: str,
        *,
        old_password: Optional[str] = None,
        require_old: bool = True,
    ) -> None:
        current = self._get(user_id)
        if require_old and not verify_password(old_password or "", current.get("passwordHash")):
            raise AuthenticationFailed(AuthFailure.INVALID_CREDENTIALS, "Current password is incorrect.")
        self.store.upsert(
            {
                PARTITION_KEY: USER_PARTITION,
                ROW_KEY: current[ROW_KEY],
                "passwordHash": hash_password(_check_password(new_password)),
                "updatedAt": isoformat_z(utc_now()),
            }
        )
        logger.info("password_changed", user_id=current[ROW_KEY])

    def authenticate(self, username: Any, password: Any) -> Dict[str, Any]:
        """Validate credentials and return the public user record.

        Raises :class:`AuthenticationFailed` with ``invalid_credentials`` for
        unknown users or a wrong password and ``account_disabled`` for
        deactivated accounts.
        """

        if not username or not password:
            raise ValidationError("Username and password are required")
        key = str(username).strip().lower()
        try:
            user = self.store.get(USER_PARTITION, key)
        except EntityNotFound:
            logger.info("login_failed", username=key, reason="unknown_user")
            raise AuthenticationFailed(AuthFailure.INVALID_CREDENTIALS) from None

        if not user.get("passwordHash"):
            if "password" in user:
                logger.warning("legacy_plaintext_password_rejected", username=key)
            raise AuthenticationFailed(AuthFailure.INVALID_CREDENTIALS)
        if not verify_password(str(password), user["passwordHash"]):
            logger.info("login_failed", username=key, reason="bad_password")
            raise AuthenticationFailed(AuthFailure.INVALID_CREDENTIALS)
        if user.get("isActive") is False:
            logger.info("login_failed", username=key, reason="disabled")
            raise AuthenticationFailed(AuthFailure.ACCOUNT_DISABLED)

        updated = self.store.upsert(
            {PARTITION_KEY: USER_PARTITION, ROW_KEY: key, "lastLogin": isoformat_z(utc_now())}
        )
        return public_user(updated)

    def ensure_bootstrap_admin(self, settings: Optional[Settings] = None) -> Optional[str]:
        """Create the initial ``super_admin`` when no users exist.

        Returns the generated password when one had to be invented, else
        ``None``.
        """

        if self.store.list(USER_PARTITION, limit=1):
            return None
        settings = settings or get_settings()
        password = settings.bootstrap_admin_password
        generated = None
        if not password:
            generated = password = secrets.token_urlsafe(12)
        self.create_user(
            {
                "username": settings.bootstrap_admin_username,
                "password": password,
                "name": "System Administrator",
                "email": settings.bootstrap_admin_email,
                "role": Role.SUPER_ADMIN.value,
            },
            created_by="bootstrap",
        )
        if generated:
            logger.warning(
                "bootstrap_admin_created",
                username=settings.bootstrap_admin_username,
                password=generated,
                note="set MEDSCRIBE_ADMIN_PASSWORD to choose the initial password",
            )
        else:
            logger.info("bootstrap_admin_created", username=settings.bootstrap_admin_username)
        return generated


__all__ = ["UserRepository", "public_user", "USERS_TABLE", "USER_PARTITION"]
