"""Client-side cache for speech service tokens."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from medscribe.client.api import ApiClient
from medscribe.errors import MedScribeError, NotAuthenticated, PermissionDenied

logger = logging.getLogger(__name__)

# Refreshed a minute ahead of the service's own cache window.
CLIENT_CACHE_SECONDS = 8 * 60


class SpeechTokenCache:
    def __init__(self, api: ApiClient, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.api = api
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[Dict[str, Any]] = None
        self._fetched_at = 0.0

    def get_token(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            if self._token is not None and now - self._fetched_at < CLIENT_CACHE_SECONDS:
                return dict(self._token)
            try:
                token = self.api.speech_token()
            except NotAuthenticated as exc:
                self._clear_locked()
                raise NotAuthenticated("Speech access requires a valid sign-in. Please log in again.") from exc
            except PermissionDenied as exc:
                self._clear_locked()
                raise PermissionDenied("You do not have permission to use the scribe feature.") from exc
            except MedScribeError:
                self._clear_locked()
                raise
            self._token = dict(token)
            self._fetched_at = now
            logger.debug("speech token refreshed for region %s", token.get("region"))
            return dict(token)

    def _clear_locked(self) -> None:
        self._token = None
        self._fetched_at = 0.0

    def clear(self) -> None:
        with self._lock:
            self._clear_locked()


__all__ = ["SpeechTokenCache", "CLIENT_CACHE_SECONDS"]
