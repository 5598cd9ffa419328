"""Normalization helpers.

Centralizes defensive parsing and entity id canonicalization. Every ingress
path runs its identifiers and coordinates through these helpers exactly once.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Threshold to distinguish epoch seconds from milliseconds.
_MS_THRESHOLD = 1e11


def canonical_entity_id(value: Any) -> str:
    """Return the canonical (trimmed, upper-cased) form of an entity id.

    Raises :class:`ValueError` for missing or blank ids.
    """
    if value is None:
        raise ValueError("entity id must be non-empty")
    text = str(value).strip()
    if not text:
        raise ValueError("entity id must be non-empty")
    return text.upper()


def safe_float(value: Any) -> float | None:
    """Return *value* as a finite float, or ``None``.

    Booleans and numeric strings are rejected: push payloads must carry
    real JSON numbers.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    result = float(value)
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an observation timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (``Z`` suffix allowed, naive
    strings taken as UTC) and epoch seconds or milliseconds.
    Returns ``None`` for anything else.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        ts = float(value)
        if math.isnan(ts) or ts <= 0:
            return None
        if ts > _MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def format_timestamp(value: datetime) -> str:
    """Render *value* as ISO-8601 UTC with a ``Z`` suffix."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
