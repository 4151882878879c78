"""Client side HTTP error mapping and the speech token cache."""

import pytest
import requests

from medscribe.client.api import ApiClient, error_from_response
from medscribe.client.speech import CLIENT_CACHE_SECONDS, SpeechTokenCache
from medscribe.errors import (
    EntityExists,
    EntityNotFound,
    GenerationFailure,
    NotAuthenticated,
    NoteGenerationError,
    PermissionDenied,
    UpstreamError,
    ValidationError,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, reason="Reason"):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.text = "" if payload is None else str(payload)
        self.content = b"" if payload is None else b"x"

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


def envelope(code, message="failed"):
    return {"success": False, "error": {"code": code, "message": message}}


@pytest.mark.parametrize(
    "status, payload, expected",
    [
        (400, envelope(400, "Invalid email address"), ValidationError),
        (401, envelope(401), NotAuthenticated),
        (403, envelope(403), PermissionDenied),
        (404, envelope(404), EntityNotFound),
        (409, envelope(409), EntityExists),
        (500, envelope(500), UpstreamError),
        (502, None, UpstreamError),
    ],
)
def test_error_from_response_by_status(status, payload, expected):
    error = error_from_response(FakeResponse(status, payload))
    assert type(error) is expected


def test_error_from_response_keeps_message():
    error = error_from_response(FakeResponse(400, envelope(400, "Invalid email address")))
    assert error.message == "Invalid email address"


def test_generation_kinds_are_preserved():
    error = error_from_response(FakeResponse(504, envelope("timeout", "Note generation timed out.")))
    assert isinstance(error, NoteGenerationError)
    assert error.failure is GenerationFailure.TIMEOUT


class RecordingHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def test_request_sends_identity_headers():
    http = RecordingHttp(FakeResponse(200, [{"id": "p1"}]))
    api = ApiClient("http://service/", session=http, headers_provider=lambda: {"Authorization": "Bearer t"})
    assert api.list_patients(search="ada") == [{"id": "p1"}]
    method, url, kwargs = http.requests[0]
    assert (method, url) == ("GET", "http://service/patients")
    assert kwargs["headers"]["Authorization"] == "Bearer t"
    assert kwargs["params"] == {"limit": 100, "search": "ada"}


def test_client_from_stored_settings():
    api = ApiClient.from_settings({"baseUrl": "https://scribe.example.org/", "timeout": 5})
    assert api.base_url == "https://scribe.example.org"
    assert api.timeout == 5.0
    assert ApiClient.from_settings({"baseUrl": "https://stored"}, "http://explicit").base_url == "http://explicit"
    assert ApiClient.from_settings(None, "http://explicit").timeout == 30.0


@pytest.mark.parametrize(
    "error, kind",
    [
        (requests.exceptions.Timeout(), GenerationFailure.TIMEOUT),
        (requests.exceptions.ConnectionError(), GenerationFailure.NETWORK),
    ],
)
def test_generate_notes_transport_failures(error, kind):
    api = ApiClient("http://service", session=RecordingHttp(error=error))
    with pytest.raises(NoteGenerationError) as excinfo:
        api.generate_notes("text", {"specialty": "internal_medicine"})
    assert excinfo.value.failure is kind


def test_generate_notes_requires_notes_field():
    api = ApiClient("http://service", session=RecordingHttp(FakeResponse(200, {"other": 1})))
    with pytest.raises(NoteGenerationError) as excinfo:
        api.generate_notes("text", {})
    assert excinfo.value.failure is GenerationFailure.MALFORMED_RESPONSE


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TokenApi:
    def __init__(self):
        self.calls = 0
        self.error = None

    def speech_token(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {"token": f"tok-{self.calls}", "region": "eastus", "expiresIn": 540}


def test_speech_cache_reuses_token_until_stale():
    api, clock = TokenApi(), Clock()
    cache = SpeechTokenCache(api, clock=clock)
    assert cache.get_token()["token"] == "tok-1"
    clock.now += CLIENT_CACHE_SECONDS - 1
    assert cache.get_token()["token"] == "tok-1"
    clock.now += 1
    assert cache.get_token()["token"] == "tok-2"


@pytest.mark.parametrize(
    "error, expected, message",
    [
        (NotAuthenticated("expired"), NotAuthenticated, "Speech access requires a valid sign-in. Please log in again."),
        (PermissionDenied("no"), PermissionDenied, "You do not have permission to use the scribe feature."),
        (UpstreamError("boom", status_code=502), UpstreamError, "boom"),
    ],
)
def test_speech_cache_clears_on_error(error, expected, message):
    api, clock = TokenApi(), Clock()
    cache = SpeechTokenCache(api, clock=clock)
    cache.get_token()
    clock.now += CLIENT_CACHE_SECONDS
    api.error = error
    with pytest.raises(expected) as excinfo:
        cache.get_token()
    assert excinfo.value.message == message

    api.error = None
    assert cache.get_token()["token"] == "tok-3"
