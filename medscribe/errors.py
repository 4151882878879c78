"""Error taxonomy shared by the service and the workstation client.

Every externally facing operation converts low level failures into one of
these classes before surfacing them.  Each error carries a short,
user-facing ``message``; ``status_code`` is the HTTP status the API layer
renders it with.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class MedScribeError(Exception):
    """Base class for all MedScribe errors."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ConfigurationError(MedScribeError):
    """Missing credentials or endpoint for an external service."""

    status_code = 500
    default_message = "Service is not configured"


class ValidationError(MedScribeError):
    """Missing required field or invalid enumerated key."""

    status_code = 400
    default_message = "Invalid request"


class AuthError(MedScribeError):
    status_code = 401
    default_message = "Authentication required"


class AuthFailure(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DISABLED = "account_disabled"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    OFFLINE = "offline"


_AUTH_FAILURE_MESSAGES = {
    AuthFailure.INVALID_CREDENTIALS: "Invalid username or password.",
    AuthFailure.ACCOUNT_DISABLED: "Account is disabled. Please contact administrator.",
    AuthFailure.TIMEOUT: "The login request timed out. Please try again.",
    AuthFailure.SERVER_ERROR: "The server encountered an error. Please try again later.",
    AuthFailure.OFFLINE: "Unable to reach the server. Check your network connection.",
}

_AUTH_FAILURE_STATUS = {
    AuthFailure.INVALID_CREDENTIALS: 401,
    AuthFailure.ACCOUNT_DISABLED: 403,
    AuthFailure.TIMEOUT: 504,
    AuthFailure.SERVER_ERROR: 502,
    AuthFailure.OFFLINE: 503,
}


class AuthenticationFailed(AuthError):
    """A login attempt failed; ``kind`` says why."""

    def __init__(self, kind: AuthFailure, message: Optional[str] = None) -> None:
        self.kind = AuthFailure(kind)
        self.status_code = _AUTH_FAILURE_STATUS[self.kind]
        super().__init__(message or _AUTH_FAILURE_MESSAGES[self.kind])


class NotAuthenticated(AuthError):
    default_message = "You must be signed in to perform this action"


class SessionExpired(AuthError):
    default_message = "Your session has expired. Please log in again."


class PermissionDenied(AuthError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class UpstreamError(MedScribeError):
    """Failure reported by the completion, speech or storage services."""

    status_code = 502
    default_message = "Upstream service error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        kind: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        self.kind = kind
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message, details=details)


class GenerationFailure(str, Enum):
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK = "network"


_GENERATION_MESSAGES = {
    GenerationFailure.TIMEOUT: "Note generation timed out. Please try again.",
    GenerationFailure.AUTHENTICATION: "The language model rejected the configured API key.",
    GenerationFailure.NOT_FOUND: "The configured model deployment was not found.",
    GenerationFailure.RATE_LIMITED: "The language model is rate limiting requests. Please wait and retry.",
    GenerationFailure.MALFORMED_RESPONSE: "The language model returned an empty or malformed response.",
    GenerationFailure.NETWORK: "Network error while contacting the language model.",
}

_GENERATION_STATUS = {
    GenerationFailure.TIMEOUT: 504,
    GenerationFailure.AUTHENTICATION: 502,
    GenerationFailure.NOT_FOUND: 502,
    GenerationFailure.RATE_LIMITED: 429,
    GenerationFailure.MALFORMED_RESPONSE: 502,
    GenerationFailure.NETWORK: 502,
}


class NoteGenerationError(UpstreamError):
    """Terminal failure of a single note generation attempt."""

    def __init__(self, kind: GenerationFailure, *, details: Any = None) -> None:
        kind = GenerationFailure(kind)
        super().__init__(
            _GENERATION_MESSAGES[kind],
            kind=kind.value,
            status_code=_GENERATION_STATUS[kind],
            details=details,
        )
        self.failure = kind


class StorageCorruption(MedScribeError):
    """Persisted state could not be parsed."""

    default_message = "Stored data is corrupted"


class EntityNotFound(MedScribeError):
    status_code = 404
    default_message = "Not found"


class EntityExists(MedScribeError):
    status_code = 409
    default_message = "Entity already exists"


__all__ = [
    "MedScribeError",
    "ConfigurationError",
    "ValidationError",
    "AuthError",
    "AuthFailure",
    "AuthenticationFailed",
    "NotAuthenticated",
    "SessionExpired",
    "PermissionDenied",
    "UpstreamError",
    "GenerationFailure",
    "NoteGenerationError",
    "StorageCorruption",
    "EntityNotFound",
    "EntityExists",
]
