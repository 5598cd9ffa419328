"""Wire payload -> PositionUpdate conversion.

Push messages and polled "latest position" responses share one layout:
a JSON object with numeric ``latitude``/``longitude`` and an optional
timestamp. Anything else is rejected by returning ``None``; callers drop
and count it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from pylocrelay._redact import redact_for_log
from pylocrelay.ingestion.normalize import parse_timestamp
from pylocrelay.models.position import PositionUpdate

_logger = logging.getLogger(__name__)

_TIMESTAMP_KEYS = ("timestamp", "observedAt", "observed_at")
_DISCARDED_KEYS = frozenset({"entityId", "surveyorId", *_TIMESTAMP_KEYS})


def decode_json_object(payload: bytes | str) -> dict[str, Any] | None:
    """Decode *payload* as a JSON object, ``None`` when it is not one."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        parsed = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def position_from_mapping(
    entity_id: str,
    data: Mapping[str, Any],
    *,
    received_at: datetime,
) -> PositionUpdate | None:
    """Build a PositionUpdate for *entity_id* from a decoded payload.

    The entity id comes from the topic or request path, never from the
    payload body. A payload without a parseable timestamp is stamped with
    *received_at*; only the coordinates are mandatory.
    """
    observed_at: datetime | None = None
    for key in _TIMESTAMP_KEYS:
        observed_at = parse_timestamp(data.get(key))
        if observed_at is not None:
            break

    fields = {key: value for key, value in data.items() if key not in _DISCARDED_KEYS}
    fields["entity_id"] = entity_id
    fields["observed_at"] = observed_at or received_at

    try:
        return PositionUpdate.model_validate(fields)
    except ValidationError:
        _logger.debug("Rejected position payload entity=%s data=%s", entity_id, redact_for_log(data))
        return None


def parse_position_payload(
    entity_id: str,
    payload: bytes | str | Mapping[str, Any] | None,
    *,
    received_at: datetime,
) -> PositionUpdate | None:
    """Parse a raw push/poll payload; ``None`` for malformed input."""
    if payload is None:
        return None
    data = payload if isinstance(payload, Mapping) else decode_json_object(payload)
    if data is None:
        return None
    return position_from_mapping(entity_id, data, received_at=received_at)
