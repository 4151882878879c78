"""Speech service token issuing with a shared, single-flight cache."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests
import structlog
from prometheus_client import Counter

from medscribe.config import Settings, get_settings
from medscribe.egress import secure_post
from medscribe.errors import ConfigurationError, UpstreamError
from medscribe.time_utils import isoformat_z, utc_now

logger = structlog.get_logger(__name__)

TOKEN_URL = "https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"
# Issued tokens live ten minutes; the cache treats them as stale after nine.
CACHE_SECONDS = 9 * 60

SPEECH_TOKEN_REQUESTS = Counter(
    "medscribe_speech_token_requests_total",
    "Speech token requests by cache result",
    ("result",),
)


class SpeechRateLimited(UpstreamError):
    status_code = 429
    default_message = "Rate limit exceeded. Please try again in a minute."
    headers = {"Retry-After": "60"}


@dataclass
class SpeechToken:
    token: str
    region: str
    expires_at: float

    def expires_in(self, now: float) -> int:
        return max(int(self.expires_at - now), 0)


class SpeechTokenService:
    def __init__(
        self,
        key: Optional[str],
        region: Optional[str],
        *,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 10.0,
    ) -> None:
        self.key = key
        self.region = region
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[SpeechToken] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SpeechTokenService":
        settings = settings or get_settings()
        return cls(settings.speech_key, settings.speech_region)

    @property
    def configured(self) -> bool:
        return bool(self.key and self.region)

    def _url(self) -> str:
        return TOKEN_URL.format(region=self.region)

    def _headers(self) -> Dict[str, str]:
        return {
            "Ocp-Apim-Subscription-Key": str(self.key),
            "Content-Type": "application/x-www-form-urlencoded",
        }

    def get_token(self) -> Dict[str, object]:
        """Return ``{"token", "region", "expiresIn"}``, issuing a new token when stale.

        Concurrent callers wait on one upstream request instead of issuing
        their own.
        """

        if not self.configured:
            raise ConfigurationError("Speech service not configured")
        with self._lock:
            now = self._clock()
            cached = self._cached
            if cached is not None and cached.region == self.region and now < cached.expires_at:
                SPEECH_TOKEN_REQUESTS.labels(result="hit").inc()
                return {"token": cached.token, "region": cached.region, "expiresIn": cached.expires_in(now)}

            SPEECH_TOKEN_REQUESTS.labels(result="miss").inc()
            token = self._issue()
            self._cached = SpeechToken(token=token, region=str(self.region), expires_at=now + CACHE_SECONDS)
            logger.info("speech_token_issued", region=self.region)
            return {"token": token, "region": self.region, "expiresIn": CACHE_SECONDS}

    def _issue(self) -> str:
        try:
            response = secure_post(self._url(), headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            logger.warning("speech_token_timeout", region=self.region)
            raise UpstreamError("Speech service timeout", kind="timeout", status_code=504) from exc
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            logger.warning("speech_token_rejected", region=self.region, status=status)
            if status == 401:
                raise UpstreamError(
                    "Invalid speech service configuration", kind="authentication", status_code=500
                ) from exc
            if status == 429:
                raise SpeechRateLimited(kind="rate_limited") from exc
            raise UpstreamError("Failed to initialize speech service", kind="upstream", status_code=502) from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("speech_token_network_error", region=self.region, error=str(exc))
            raise UpstreamError("Failed to initialize speech service", kind="network", status_code=502) from exc
        token = response.text.strip()
        if not token:
            raise UpstreamError("Speech service returned an empty token", kind="malformed", status_code=502)
        return token

    def clear(self) -> None:
        with self._lock:
            self._cached = None
        logger.info("speech_token_cache_cleared")

    def health(self) -> Dict[str, object]:
        """Probe the token endpoint; returns a body with ``status`` healthy/unhealthy."""

        if not self.configured:
            return {"status": "unhealthy", "error": "Speech service not configured"}
        try:
            secure_post(self._url(), headers=self._headers(), timeout=5)
        except (requests.exceptions.RequestException, RuntimeError) as exc:
            logger.warning("speech_health_failed", error=str(exc))
            return {"status": "unhealthy", "error": "Cannot reach Azure Speech service"}
        return {"status": "healthy", "region": self.region, "timestamp": isoformat_z(utc_now())}


__all__ = ["SpeechTokenService", "SpeechRateLimited", "CACHE_SECONDS", "SPEECH_TOKEN_REQUESTS"]
