"""
Chat completion client for note generation.

Behaviour hierarchy:
1. If USE_OFFLINE_MODEL is set, return a deterministic placeholder without any
   external calls.
2. Otherwise call the configured Azure OpenAI deployment.

Every SDK failure is converted into a :class:`NoteGenerationError` carrying a
failure kind, so callers have a consistent error path.  Requests are never
retried.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional

import openai
import structlog

from medscribe.config import Settings, get_settings
from medscribe.errors import ConfigurationError, GenerationFailure, NoteGenerationError

logger = structlog.get_logger(__name__)

COMPLETION_PARAMS: Dict[str, Any] = {
    "max_tokens": 2000,
    "temperature": 0.1,
    "top_p": 0.9,
    "frequency_penalty": 0.1,
}


def _deterministic_placeholder(messages: List[Dict[str, str]]) -> str:
    """Return a deterministic placeholder note based on the message content."""
    joined = "\n".join(f"{m.get('role')}:{m.get('content', '')}" for m in messages)
    h = hashlib.sha1(joined.encode("utf-8")).hexdigest()[:12]
    return (
        "CHIEF COMPLAINT:\nOffline placeholder note.\n\n"
        "HISTORY OF PRESENT ILLNESS:\nGenerated without contacting the language model.\n\n"
        "REVIEW OF SYSTEMS:\nNot assessed.\n\n"
        "PHYSICAL EXAMINATION:\nNot assessed.\n\n"
        f"ASSESSMENT AND PLAN:\n- Offline response ({h})"
    )


def classify_exception(exc: BaseException) -> GenerationFailure:
    """Map an ``openai`` SDK exception onto a generation failure kind."""

    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, openai.APITimeoutError):
        return GenerationFailure.TIMEOUT
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return GenerationFailure.AUTHENTICATION
    if isinstance(exc, openai.NotFoundError):
        return GenerationFailure.NOT_FOUND
    if isinstance(exc, openai.RateLimitError):
        return GenerationFailure.RATE_LIMITED
    if isinstance(exc, openai.APIStatusError) and exc.status_code == 408:
        return GenerationFailure.TIMEOUT
    if isinstance(exc, (openai.APIResponseValidationError, ValueError, KeyError, IndexError)):
        return GenerationFailure.MALFORMED_RESPONSE
    return GenerationFailure.NETWORK


class AzureChatClient:
    """Single-shot chat completions against an Azure OpenAI deployment.

    ``client`` may be any object exposing ``chat.completions.create`` and is
    built lazily from the settings when omitted.
    """

    def __init__(
        self,
        *,
        endpoint: Optional[str],
        api_key: Optional[str],
        deployment: str = "gpt-4",
        api_version: str = "2024-08-01-preview",
        timeout: float = 30.0,
        offline: bool = False,
        client: Any = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/") if endpoint else endpoint
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self.timeout = timeout
        self.offline = offline
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "AzureChatClient":
        settings = settings or get_settings()
        return cls(
            endpoint=settings.openai_endpoint,
            api_key=settings.openai_key,
            deployment=settings.openai_deployment,
            api_version=settings.openai_api_version,
            timeout=settings.openai_timeout,
            offline=settings.use_offline_model,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return self.offline or bool(self.endpoint and self.api_key)

    def _sdk_client(self) -> Any:
        if self._client is None:
            if not (self.endpoint and self.api_key):
                raise ConfigurationError("OpenAI configuration missing")
            self._client = openai.AzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=self.api_key,
                api_version=self.api_version,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete(self, messages: List[Dict[str, str]]) -> str:
        """Return the assistant content for ``messages``.

        Raises:
            ConfigurationError when no endpoint or key is configured.
            NoteGenerationError for any failure of the completion call.
        """
        if self.offline:
            return _deterministic_placeholder(messages)

        client = self._sdk_client()
        try:
            response = client.chat.completions.create(
                model=self.deployment,
                messages=messages,
                timeout=self.timeout,
                **COMPLETION_PARAMS,
            )
        except openai.OpenAIError as exc:
            kind = classify_exception(exc)
            logger.warning("completion_failed", kind=kind.value, error=str(exc))
            raise NoteGenerationError(kind) from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise NoteGenerationError(GenerationFailure.MALFORMED_RESPONSE) from exc
        if not isinstance(content, str) or not content.strip():
            raise NoteGenerationError(GenerationFailure.MALFORMED_RESPONSE)
        return content


__all__ = ["AzureChatClient", "COMPLETION_PARAMS", "classify_exception"]
