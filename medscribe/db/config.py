"""Database configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from platformdirs import user_data_dir

from medscribe.config import APP_NAME


@dataclass(frozen=True)
class DatabaseSettings:
    """Resolved database configuration for the record store."""

    url: str
    echo: bool = False

    def engine_options(self) -> Dict[str, object]:
        """Return keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.echo, "future": True}
        connect_args: Dict[str, object] = {}
        pool_size = _get_int_env("DB_POOL_SIZE")
        if pool_size is not None and not self.is_sqlite:
            options["pool_size"] = pool_size
        pool_timeout = _get_int_env("DB_POOL_TIMEOUT")
        if pool_timeout is not None and not self.is_sqlite:
            options["pool_timeout"] = pool_timeout
        if self.is_sqlite:
            connect_args["check_same_thread"] = False
        if connect_args:
            options["connect_args"] = connect_args
        return options

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


def _default_sqlite_path() -> Path:
    data_dir = Path(user_data_dir(APP_NAME, APP_NAME))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "records.db"


def _normalise_sqlite_path(path: str | os.PathLike[str]) -> Path:
    resolved = Path(path).expanduser()
    if resolved.is_dir():
        resolved = resolved / "records.db"
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def _get_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:  # pragma: no cover - clearly surface misconfiguration
        raise ValueError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """Return the active database settings derived from the environment."""

    echo = os.getenv("DB_ECHO", "").lower() in {"1", "true", "yes"}
    url = os.getenv("MEDSCRIBE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return DatabaseSettings(url=url, echo=echo)

    path_override = os.getenv("MEDSCRIBE_DB_PATH")
    if path_override:
        db_path = _normalise_sqlite_path(path_override)
    else:
        db_path = _default_sqlite_path()

    return DatabaseSettings(url=f"sqlite:///{db_path}", echo=echo)
