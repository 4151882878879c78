"""Note generation preconditions and completion failure handling."""

import httpx
import openai
import pytest

from medscribe.errors import (
    ConfigurationError,
    GenerationFailure,
    NoteGenerationError,
    PermissionDenied,
    ValidationError,
)
from medscribe.notes import NoteGenerator, generate_note
from medscribe.openai_client import COMPLETION_PARAMS, AzureChatClient, classify_exception

TRAINING = {"specialty": "internal_medicine", "noteType": "progress_note"}
REQUEST = httpx.Request("POST", "https://medscribe-test.openai.azure.com/openai/deployments/gpt-4/chat/completions")


def status_error(cls, status):
    return cls("upstream said no", response=httpx.Response(status, request=REQUEST), body=None)


def test_generate_returns_plain_text(chat_client, fake_openai):
    notes = NoteGenerator(chat_client).generate("Patient reports mild cough.", None, TRAINING, role="doctor")
    assert notes == "CHIEF COMPLAINT:\nCough\n\nASSESSMENT AND PLAN:\n• Rest"

    (call,) = fake_openai.completions.calls
    assert call["model"] == "gpt-4"
    for key, value in COMPLETION_PARAMS.items():
        assert call[key] == value
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


def test_permission_is_checked_before_calling(chat_client, fake_openai):
    with pytest.raises(PermissionDenied):
        NoteGenerator(chat_client).generate("text", None, TRAINING, role="nurse")
    with pytest.raises(PermissionDenied):
        NoteGenerator(chat_client).generate("text", None, TRAINING, role=None)
    assert fake_openai.completions.calls == []


@pytest.mark.parametrize("transcript", ["", "   ", None])
def test_empty_transcript_is_rejected(chat_client, fake_openai, transcript):
    with pytest.raises(ValidationError) as excinfo:
        NoteGenerator(chat_client).generate(transcript, None, TRAINING, role="doctor")
    assert excinfo.value.message == "No transcript available"
    assert fake_openai.completions.calls == []


def test_missing_configuration_is_reported(fake_openai):
    client = AzureChatClient(endpoint=None, api_key=None, client=fake_openai)
    with pytest.raises(ConfigurationError) as excinfo:
        NoteGenerator(client).generate("text", None, TRAINING, role="doctor")
    assert excinfo.value.message == "OpenAI configuration missing"
    assert fake_openai.completions.calls == []


def test_timeout_surfaces_as_timeout_kind(chat_client, fake_openai):
    fake_openai.completions.error = openai.APITimeoutError(request=REQUEST)
    transcript = "Patient reports mild cough."
    with pytest.raises(NoteGenerationError) as excinfo:
        generate_note(transcript, None, TRAINING, role="doctor", client=chat_client)
    assert excinfo.value.failure is GenerationFailure.TIMEOUT
    assert excinfo.value.status_code == 504
    assert transcript == "Patient reports mild cough."
    assert len(fake_openai.completions.calls) == 1


def test_empty_completion_is_malformed(chat_client, fake_openai):
    fake_openai.completions.content = "   "
    with pytest.raises(NoteGenerationError) as excinfo:
        NoteGenerator(chat_client).generate("text", None, TRAINING, role="doctor")
    assert excinfo.value.kind == "malformed_response"


@pytest.mark.parametrize(
    "error, expected",
    [
        (openai.APITimeoutError(request=REQUEST), GenerationFailure.TIMEOUT),
        (status_error(openai.AuthenticationError, 401), GenerationFailure.AUTHENTICATION),
        (status_error(openai.PermissionDeniedError, 403), GenerationFailure.AUTHENTICATION),
        (status_error(openai.NotFoundError, 404), GenerationFailure.NOT_FOUND),
        (status_error(openai.RateLimitError, 429), GenerationFailure.RATE_LIMITED),
        (status_error(openai.APIStatusError, 408), GenerationFailure.TIMEOUT),
        (status_error(openai.InternalServerError, 500), GenerationFailure.NETWORK),
        (openai.APIConnectionError(request=REQUEST), GenerationFailure.NETWORK),
    ],
)
def test_classify_exception(error, expected):
    assert classify_exception(error) is expected


def test_sdk_errors_are_not_retried(chat_client, fake_openai):
    fake_openai.completions.error = status_error(openai.RateLimitError, 429)
    with pytest.raises(NoteGenerationError) as excinfo:
        chat_client.complete([{"role": "user", "content": "x"}])
    assert excinfo.value.kind == "rate_limited"
    assert excinfo.value.status_code == 429
    assert len(fake_openai.completions.calls) == 1


def test_offline_mode_returns_deterministic_placeholder(fake_openai):
    client = AzureChatClient(endpoint=None, api_key=None, offline=True, client=fake_openai)
    assert client.configured
    first = NoteGenerator(client).generate("text", None, TRAINING, role="medical_provider")
    second = NoteGenerator(client).generate("text", None, TRAINING, role="medical_provider")
    assert first == second
    assert "CHIEF COMPLAINT:" in first
    assert fake_openai.completions.calls == []


def test_from_settings_reads_environment(monkeypatch):
    from medscribe.config import get_settings

    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com/")
    monkeypatch.setenv("AZURE_OPENAI_KEY", "k")
    monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT", "notes-model")
    get_settings.cache_clear()
    try:
        client = AzureChatClient.from_settings()
    finally:
        get_settings.cache_clear()
    assert client.configured
    assert client.endpoint == "https://example.openai.azure.com"
    assert client.deployment == "notes-model"
