"""HTTP client for the MedScribe service."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from medscribe.errors import (
    AuthenticationFailed,
    AuthFailure,
    EntityExists,
    EntityNotFound,
    GenerationFailure,
    MedScribeError,
    NoteGenerationError,
    NotAuthenticated,
    PermissionDenied,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_TIMEOUT = 30.0
# Note generation waits on the completion service's own 30 second timeout.
GENERATE_TIMEOUT = 45.0

_GENERATION_KINDS = {kind.value for kind in GenerationFailure}


def _error_body(response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text or response.reason}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    if isinstance(payload, dict):
        return payload
    return {"message": str(payload)}


def error_from_response(response: requests.Response) -> MedScribeError:
    """Translate a non-2xx response into the matching :class:`MedScribeError`."""

    body = _error_body(response)
    message = str(body.get("message") or body.get("error") or response.reason or "Request failed")
    code = body.get("code")
    status = response.status_code
    if isinstance(code, str) and code in _GENERATION_KINDS:
        return NoteGenerationError(GenerationFailure(code), details=body.get("details"))
    if status == 400:
        return ValidationError(message, details=body.get("details"))
    if status == 401:
        return NotAuthenticated(message)
    if status == 403:
        return PermissionDenied(message)
    if status == 404:
        return EntityNotFound(message)
    if status == 409:
        return EntityExists(message)
    return UpstreamError(message, kind=code if isinstance(code, str) else None, status_code=status)


class ApiClient:
    """Thin wrapper over :mod:`requests` for the service endpoints.

    ``headers_provider`` supplies identity headers for every call except
    login; the session manager passes its ``auth_headers``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers_provider: Optional[Callable[[], Dict[str, str]]] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("MEDSCRIBE_API_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.http = session or requests.Session()
        self.timeout = timeout
        self.headers_provider = headers_provider

    @classmethod
    def from_settings(
        cls, settings: Optional[Mapping[str, Any]], base_url: Optional[str] = None, **kwargs: Any
    ) -> "ApiClient":
        """Build a client from a profile's ``api_settings`` slot.

        An explicit ``base_url`` wins over the stored ``baseUrl``.
        """

        settings = settings or {}
        if settings.get("timeout") and "timeout" not in kwargs:
            kwargs["timeout"] = float(settings["timeout"])
        return cls(base_url or settings.get("baseUrl"), **kwargs)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.headers_provider is not None:
            headers.update(self.headers_provider())
        return headers

    def request(self, method: str, path: str, *, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}) or {})
        response = self.http.request(
            method,
            self._url(path),
            headers=headers,
            timeout=timeout or self.timeout,
            **kwargs,
        )
        if response.status_code >= 400:
            raise error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -- identity --------------------------------------------------------

    def login(self, username: str, password: str) -> Dict[str, Any]:
        """Return ``{"token", "user"}`` or raise :class:`AuthenticationFailed`."""

        try:
            response = self.http.post(
                self._url("/users/login"),
                json={"username": username, "password": password},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise AuthenticationFailed(AuthFailure.TIMEOUT) from exc
        except requests.exceptions.ConnectionError as exc:
            raise AuthenticationFailed(AuthFailure.OFFLINE) from exc
        except requests.exceptions.RequestException as exc:
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR) from exc

        if response.status_code in (400, 401):
            raise AuthenticationFailed(AuthFailure.INVALID_CREDENTIALS)
        if response.status_code == 403:
            raise AuthenticationFailed(AuthFailure.ACCOUNT_DISABLED)
        if response.status_code in (408, 504):
            raise AuthenticationFailed(AuthFailure.TIMEOUT)
        if response.status_code >= 400:
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR)
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR) from exc
        if not isinstance(payload, dict) or not payload.get("token") or not isinstance(payload.get("user"), dict):
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR)
        return payload

    # -- notes and speech -----------------------------------------------

    def generate_notes(
        self,
        transcript: str,
        training_config: Mapping[str, Any],
        patient_id: Optional[str] = None,
    ) -> str:
        body = {"transcript": transcript, "trainingConfig": dict(training_config), "patientId": patient_id}
        try:
            payload = self.request("POST", "/generate-notes", json=body, timeout=GENERATE_TIMEOUT)
        except requests.exceptions.Timeout as exc:
            raise NoteGenerationError(GenerationFailure.TIMEOUT) from exc
        except requests.exceptions.RequestException as exc:
            raise NoteGenerationError(GenerationFailure.NETWORK) from exc
        notes = payload.get("notes") if isinstance(payload, dict) else None
        if not isinstance(notes, str):
            raise NoteGenerationError(GenerationFailure.MALFORMED_RESPONSE)
        return notes

    def speech_token(self) -> Dict[str, Any]:
        return self.request("GET", "/speech-token")

    # -- records ---------------------------------------------------------

    def list_patients(self, search: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if search:
            params["search"] = search
        return self.request("GET", "/patients", params=params)

    def get_patient(self, patient_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/patients/{patient_id}")

    def create_patient(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/patients", json=dict(data))

    def update_patient(self, patient_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("PUT", f"/patients/{patient_id}", json=dict(data))

    def delete_patient(self, patient_id: str) -> None:
        self.request("DELETE", f"/patients/{patient_id}")

    def list_visits(self, patient_id: str) -> List[Dict[str, Any]]:
        return self.request("GET", "/visits", params={"patientId": patient_id})

    def create_visit(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/visits", json=dict(data))

    def list_users(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/users")

    def create_user(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/users", json=dict(data))

    def health(self) -> Dict[str, Any]:
        return self.request("GET", "/health")


__all__ = ["ApiClient", "error_from_response", "DEFAULT_BASE_URL"]
