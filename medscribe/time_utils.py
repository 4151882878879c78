"""Utilities for working with timestamps in UTC."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as a timezone-aware ``datetime`` in UTC."""

    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise ``dt`` to a timezone-aware UTC ``datetime``."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Render ``dt`` as second precision ISO 8601 text with a ``Z`` suffix."""

    dt_utc = ensure_utc(dt).replace(microsecond=0)
    text = dt_utc.isoformat()
    if text.endswith("+00:00"):
        return text[:-6] + "Z"
    return text


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO 8601 text (``Z`` suffix allowed) into a UTC ``datetime``."""

    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def calculate_age(dob: Optional[str], today: Optional[date] = None) -> Optional[int]:
    """Return the age in whole years for an ISO ``YYYY-MM-DD`` date of birth."""

    if not dob:
        return None
    try:
        birth = datetime.strptime(dob[:10], "%Y-%m-%d").date()
    except ValueError:
        return None
    today = today or date.today()
    years = today.year - birth.year - ((today.month, today.day) < (birth.month, birth.day))
    return max(years, 0)


__all__ = ["utc_now", "ensure_utc", "isoformat_z", "parse_iso", "calculate_age"]
