"""Database helpers for MedScribe."""

from __future__ import annotations

from .config import DatabaseSettings, get_database_settings

__all__ = ["DatabaseSettings", "get_database_settings"]
