"""Speech token issuing, caching and the speech endpoints."""

import pytest
import requests

from medscribe.errors import ConfigurationError, UpstreamError
from medscribe.speech import CACHE_SECONDS, SpeechRateLimited, SpeechTokenService


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def http_error(status):
    response = requests.Response()
    response.status_code = status
    return requests.exceptions.HTTPError(response=response)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(clock):
    return SpeechTokenService("speech-key", "eastus", clock=clock)


def failing_post(error):
    def fake_post(url, **kwargs):
        raise error

    return fake_post


def test_token_is_cached_for_nine_minutes(service, clock, speech_calls):
    first = service.get_token()
    assert first == {"token": "token-1", "region": "eastus", "expiresIn": CACHE_SECONDS}
    call = speech_calls[0]
    assert call["url"] == "https://eastus.api.cognitive.microsoft.com/sts/v1.0/issueToken"
    assert call["headers"]["Ocp-Apim-Subscription-Key"] == "speech-key"

    clock.now += 60
    cached = service.get_token()
    assert cached["token"] == "token-1"
    assert cached["expiresIn"] == CACHE_SECONDS - 60
    assert len(speech_calls) == 1

    clock.now += CACHE_SECONDS
    assert service.get_token()["token"] == "token-2"


def test_clear_forces_refresh(service, speech_calls):
    service.get_token()
    service.clear()
    assert service.get_token()["token"] == "token-2"


def test_unconfigured_service(speech_calls):
    with pytest.raises(ConfigurationError):
        SpeechTokenService(None, "eastus").get_token()
    assert speech_calls == []


@pytest.mark.parametrize(
    "error, status, message",
    [
        (requests.exceptions.Timeout(), 504, "Speech service timeout"),
        (http_error(401), 500, "Invalid speech service configuration"),
        (http_error(403), 502, "Failed to initialize speech service"),
        (requests.exceptions.ConnectionError(), 502, "Failed to initialize speech service"),
    ],
)
def test_upstream_failures(service, monkeypatch, error, status, message):
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(error))
    with pytest.raises(UpstreamError) as excinfo:
        service.get_token()
    assert excinfo.value.status_code == status
    assert excinfo.value.message == message


def test_rate_limit(service, monkeypatch):
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(http_error(429)))
    with pytest.raises(SpeechRateLimited) as excinfo:
        service.get_token()
    assert excinfo.value.status_code == 429
    assert excinfo.value.headers == {"Retry-After": "60"}


def test_failed_refresh_is_not_cached(service, monkeypatch, speech_calls):
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(requests.exceptions.Timeout()))
    with pytest.raises(UpstreamError):
        service.get_token()
    assert service._cached is None


def test_health(service, speech_calls, monkeypatch):
    assert service.health()["status"] == "healthy"
    assert SpeechTokenService(None, None).health()["status"] == "unhealthy"
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(requests.exceptions.ConnectionError()))
    assert service.health() == {"status": "unhealthy", "error": "Cannot reach Azure Speech service"}


def test_speech_token_endpoint(api_client, headers, speech_calls):
    resp = api_client.get("/speech-token", headers=headers["medical_provider"])
    assert resp.status_code == 200
    assert resp.json()["token"] == "token-1"
    assert resp.json()["region"] == "eastus"
    assert resp.headers["Cache-Control"] == f"private, max-age={CACHE_SECONDS}"

    api_client.get("/speech-token", headers=headers["doctor"])
    assert len(speech_calls) == 1


def test_speech_token_endpoint_permissions(api_client, headers):
    assert api_client.get("/speech-token").status_code == 401
    assert api_client.get("/speech-token", headers=headers["nurse"]).status_code == 403


def test_speech_token_rate_limited_response(api_client, headers, monkeypatch):
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(http_error(429)))
    resp = api_client.get("/speech-token", headers=headers["doctor"])
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "60"
    assert resp.json()["error"]["message"] == "Rate limit exceeded. Please try again in a minute."


def test_clear_cache_endpoint(api_client, headers, speech_calls):
    api_client.get("/speech-token", headers=headers["doctor"])
    assert api_client.delete("/speech-token/cache", headers=headers["doctor"]).status_code == 403
    resp = api_client.delete("/speech-token/cache", headers=headers["admin"])
    assert resp.status_code == 200
    assert resp.json()["message"] == "Cache cleared successfully"
    api_client.get("/speech-token", headers=headers["doctor"])
    assert len(speech_calls) == 2


def test_speech_health_endpoint(api_client, monkeypatch):
    assert api_client.get("/speech-health").json()["status"] == "healthy"
    monkeypatch.setattr("medscribe.speech.secure_post", failing_post(requests.exceptions.Timeout()))
    resp = api_client.get("/speech-health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"
