"""Per-profile JSON persistence for the workstation client.

Each profile is a directory of named slots (``session.json``,
``training.json`` ...).  Writes go through a temporary file and
``os.replace`` so a crash never leaves a half-written slot behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_data_dir

from medscribe.config import APP_NAME
from medscribe.errors import StorageCorruption
from medscribe.time_utils import utc_now

logger = logging.getLogger(__name__)

SESSION_SLOT = "session"
IDENTITY_SLOT = "identity"
API_SETTINGS_SLOT = "api_settings"
TRAINING_SLOT = "training"
SLOTS = (SESSION_SLOT, IDENTITY_SLOT, API_SETTINGS_SLOT, TRAINING_SLOT)

DEFAULT_PROFILE = "default"


def default_profile_dir(name: str = DEFAULT_PROFILE) -> Path:
    override = os.getenv("MEDSCRIBE_PROFILE_DIR")
    if override:
        return Path(override).expanduser() / name
    return Path(user_data_dir(APP_NAME, APP_NAME)) / "profiles" / name


class ProfileStore:
    def __init__(self, directory: Optional[os.PathLike[str] | str] = None) -> None:
        self.directory = Path(directory) if directory is not None else default_profile_dir()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path(self, slot: str) -> Path:
        if slot not in SLOTS:
            raise ValueError(f"Unknown profile slot: {slot!r}")
        return self.directory / f"{slot}.json"

    def _load(self, slot: str) -> Any:
        path = self.path(slot)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageCorruption(f"Profile slot {slot!r} is not valid JSON", details=str(exc)) from exc

    def read(self, slot: str, default: Any = None) -> Any:
        """Return the stored value for ``slot`` or ``default``.

        A corrupted slot is moved aside to ``<slot>.corrupt-<timestamp>.json``
        and treated as missing.
        """

        path = self.path(slot)
        if not path.exists():
            return default
        try:
            return self._load(slot)
        except StorageCorruption:
            stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
            quarantine = self.directory / f"{slot}.corrupt-{stamp}.json"
            os.replace(path, quarantine)
            logger.warning("profile slot %s corrupted; moved to %s", slot, quarantine.name)
            return default

    def write(self, slot: str, value: Any) -> None:
        path = self.path(slot)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{slot}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2, default=str)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def clear(self, *slots: str) -> None:
        for slot in slots:
            try:
                self.path(slot).unlink()
            except FileNotFoundError:
                pass

    def clear_all(self) -> None:
        """Remove every slot.  Only used by the explicit reset action."""

        self.clear(*SLOTS)


__all__ = [
    "ProfileStore",
    "SESSION_SLOT",
    "IDENTITY_SLOT",
    "API_SETTINGS_SLOT",
    "TRAINING_SLOT",
    "default_profile_dir",
]
