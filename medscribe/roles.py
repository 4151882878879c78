"""Roles, actions and the static role to permission table.

``doctor`` and ``medical_provider`` are distinct roles: doctors carry broad
clinical rights plus patient management, medical providers may only scribe,
train and work with their own notes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    DOCTOR = "doctor"
    MEDICAL_PROVIDER = "medical_provider"
    NURSE = "nurse"
    STAFF = "staff"
    SUPPORT_STAFF = "support_staff"


class Action(str, Enum):
    SCRIBE = "scribe"
    TRAINING = "training"
    ADD_PATIENTS = "add_patients"
    EDIT_PATIENTS = "edit_patients"
    DELETE_PATIENTS = "delete_patients"
    ADD_USERS = "add_users"
    EDIT_USERS = "edit_users"
    DELETE_USERS = "delete_users"
    MANAGE_USERS = "manage_users"
    READ_ALL_NOTES = "read_all_notes"
    EDIT_ALL_NOTES = "edit_all_notes"
    DELETE_ALL_NOTES = "delete_all_notes"
    READ_OWN_NOTES = "read_own_notes"
    EDIT_OWN_NOTES = "edit_own_notes"
    DELETE_OWN_NOTES = "delete_own_notes"
    MANAGE_SETTINGS = "manage_settings"
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"


A = Action

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.SUPER_ADMIN: frozenset(
        {
            A.SCRIBE,
            A.TRAINING,
            A.ADD_PATIENTS,
            A.EDIT_PATIENTS,
            A.DELETE_PATIENTS,
            A.ADD_USERS,
            A.EDIT_USERS,
            A.DELETE_USERS,
            A.MANAGE_USERS,
            A.READ_ALL_NOTES,
            A.EDIT_ALL_NOTES,
            A.DELETE_ALL_NOTES,
            A.READ_OWN_NOTES,
            A.EDIT_OWN_NOTES,
            A.MANAGE_SETTINGS,
            A.VIEW_ANALYTICS,
            A.EXPORT_DATA,
        }
    ),
    Role.ADMIN: frozenset(
        {
            A.SCRIBE,
            A.TRAINING,
            A.ADD_PATIENTS,
            A.EDIT_PATIENTS,
            A.ADD_USERS,
            A.EDIT_USERS,
            A.MANAGE_USERS,
            A.READ_ALL_NOTES,
            A.EDIT_OWN_NOTES,
            A.VIEW_ANALYTICS,
        }
    ),
    Role.DOCTOR: frozenset(
        {
            A.SCRIBE,
            A.TRAINING,
            A.ADD_PATIENTS,
            A.EDIT_PATIENTS,
            A.DELETE_PATIENTS,
            A.READ_OWN_NOTES,
            A.EDIT_OWN_NOTES,
            A.DELETE_OWN_NOTES,
        }
    ),
    Role.MEDICAL_PROVIDER: frozenset(
        {A.SCRIBE, A.TRAINING, A.READ_OWN_NOTES, A.EDIT_OWN_NOTES}
    ),
    Role.NURSE: frozenset({A.ADD_PATIENTS, A.EDIT_PATIENTS, A.READ_ALL_NOTES}),
    Role.STAFF: frozenset({A.ADD_PATIENTS, A.EDIT_PATIENTS, A.READ_ALL_NOTES}),
    Role.SUPPORT_STAFF: frozenset({A.ADD_PATIENTS, A.READ_ALL_NOTES}),
}

_missing = set(Role) - set(ROLE_PERMISSIONS)
assert not _missing, f"roles without a permission set: {sorted(r.value for r in _missing)}"

# Sentinels written by older clients when the role could not be resolved.
UNKNOWN_ROLE_SENTINELS = frozenset({"unknown", "unknown user", "unknown_user"})

# Display labels used by the legacy UI, mapped to role keys.
_ROLE_LABELS = {
    "super admin": Role.SUPER_ADMIN,
    "medical provider": Role.MEDICAL_PROVIDER,
    "support staff": Role.SUPPORT_STAFF,
}

ADMIN_ALIASES = frozenset({"admin", "administrator", "superadmin", "root"})
DOCTOR_PREFIX_TOKENS = ("dr.", "dr_", "doctor")


def parse_role(value: Any) -> Optional[Role]:
    """Return the :class:`Role` named by ``value`` or ``None``."""

    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if not text or text in UNKNOWN_ROLE_SENTINELS:
        return None
    if text in _ROLE_LABELS:
        return _ROLE_LABELS[text]
    try:
        return Role(text.replace(" ", "_"))
    except ValueError:
        return None


def parse_action(value: Any) -> Optional[Action]:
    if isinstance(value, Action):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Action(value.strip().lower())
    except ValueError:
        return None


def has_permission(role: Union[Role, str, None], action: Union[Action, str, None]) -> bool:
    """Return ``True`` when ``role`` is granted ``action``.

    Unknown or missing roles and actions are denied.
    """

    resolved_role = parse_role(role)
    resolved_action = parse_action(action)
    if resolved_role is None or resolved_action is None:
        return False
    return resolved_action in ROLE_PERMISSIONS[resolved_role]


def permissions_for(role: Union[Role, str, None]) -> FrozenSet[Action]:
    resolved = parse_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS[resolved]


def _email_domain(email: str) -> str:
    _, _, domain = email.rpartition("@")
    return domain if "@" in email else ""


def determine_user_role(
    user: Mapping[str, Any],
    *,
    org_domain: Optional[str] = None,
    super_admin_marker: Optional[str] = None,
) -> Role:
    """Derive a role for ``user`` when the stored one is missing or unknown.

    The checks run in a fixed order: organisation domain or super admin
    marker, administrative alias, doctor pattern, nurse/staff literal,
    existing valid role, then the ``doctor`` default.
    """

    if org_domain is None or super_admin_marker is None:
        from medscribe.config import get_settings

        settings = get_settings()
        if org_domain is None:
            org_domain = settings.org_domain
        if super_admin_marker is None:
            super_admin_marker = settings.super_admin_marker

    username = str(user.get("username") or "").strip().lower()
    email = str(user.get("email") or "").strip().lower()
    if not email and "@" in username:
        email = username
    org_domain = (org_domain or "").lower()
    marker = (super_admin_marker or "").lower()

    if org_domain and email and _email_domain(email) == org_domain:
        return Role.SUPER_ADMIN
    if marker and (marker in email or marker in username):
        return Role.SUPER_ADMIN

    if username in ADMIN_ALIASES:
        return Role.SUPER_ADMIN

    if username == "doctor" or any(token in username for token in DOCTOR_PREFIX_TOKENS):
        return Role.DOCTOR

    if username == "nurse":
        return Role.NURSE
    if username == "staff":
        return Role.STAFF

    existing = parse_role(user.get("role"))
    if existing is not None:
        return existing

    return Role.DOCTOR


def ensure_valid_role(
    user: Mapping[str, Any],
    *,
    org_domain: Optional[str] = None,
    super_admin_marker: Optional[str] = None,
) -> Role:
    """Return the stored role when valid, otherwise run :func:`determine_user_role`."""

    existing = parse_role(user.get("role"))
    if existing is not None:
        return existing
    return determine_user_role(
        user, org_domain=org_domain, super_admin_marker=super_admin_marker
    )


def resolve_display_name(user: Mapping[str, Any]) -> str:
    """Explicit name, then username, then the local part of the email, then ``User``."""

    for key in ("name", "username"):
        value = user.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    email = user.get("email")
    if isinstance(email, str) and "@" in email:
        local = email.split("@", 1)[0].strip()
        if local:
            return local
    return "User"


__all__ = [
    "Role",
    "Action",
    "ROLE_PERMISSIONS",
    "ADMIN_ALIASES",
    "parse_role",
    "parse_action",
    "has_permission",
    "permissions_for",
    "determine_user_role",
    "ensure_valid_role",
    "resolve_display_name",
]
