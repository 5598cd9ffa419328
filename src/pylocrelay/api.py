"""Position Store read endpoints.

Endpoints:
  - /location/{id}/latest   (polling fallback)
  - /location/{id}/track    (initial path seeding)
  - /surveyors/status       (online/offline overview)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from pylocrelay._constants import LATEST_ENDPOINT, STATUS_ENDPOINT, TRACK_ENDPOINT
from pylocrelay._transport import JsonTransport, Transport
from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import RelayTransportError
from pylocrelay.ingestion.normalize import canonical_entity_id, format_timestamp, parse_timestamp
from pylocrelay.ingestion.payload import position_from_mapping
from pylocrelay.models.position import PositionUpdate

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LocationApi:
    """Async reader for the Position Store REST API.

    Usage::

        async with aiohttp.ClientSession() as http:
            api = LocationApi(config, http)
            latest = await api.get_latest("SUR009")
    """

    def __init__(
        self,
        config: RelayConfig,
        http_session: aiohttp.ClientSession | None = None,
        *,
        transport: Transport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if transport is None:
            if http_session is None:
                raise ValueError("LocationApi needs an aiohttp session or a transport")
            transport = JsonTransport(config, http_session)
        self._transport = transport
        self._clock = clock

    async def get_latest(self, entity_id: str) -> PositionUpdate | None:
        """Return the most recent fix for *entity_id*.

        ``None`` when the store has no fix yet. A body that is present but
        lacks numeric coordinates raises :class:`RelayTransportError`.
        """
        entity = canonical_entity_id(entity_id)
        endpoint = LATEST_ENDPOINT.format(entity_id=entity)
        body = await self._transport.get_json(endpoint)
        if body is None:
            return None
        if not isinstance(body, dict):
            raise RelayTransportError(f"Expected object from {endpoint}", endpoint=endpoint)

        update = position_from_mapping(entity, body, received_at=self._clock())
        if update is None:
            raise RelayTransportError(f"Unusable position from {endpoint}", endpoint=endpoint)
        return update

    async def get_track(self, entity_id: str, start: datetime, end: datetime) -> list[PositionUpdate]:
        """Return the fixes for *entity_id* between *start* and *end*, oldest first.

        Entries without a timestamp or numeric coordinates are skipped.
        """
        if end < start:
            raise ValueError("end must not be before start")
        entity = canonical_entity_id(entity_id)
        endpoint = TRACK_ENDPOINT.format(entity_id=entity)
        params = {"from": format_timestamp(start), "to": format_timestamp(end)}
        body = await self._transport.get_json(endpoint, params)
        if body is None:
            return []
        if not isinstance(body, list):
            raise RelayTransportError(f"Expected array from {endpoint}", endpoint=endpoint)

        points: list[PositionUpdate] = []
        skipped = 0
        for entry in body:
            point = _track_point(entity, entry)
            if point is None:
                skipped += 1
                continue
            points.append(point)
        if skipped:
            _logger.debug("Skipped %d unusable track entries for entity=%s", skipped, entity)
        points.sort(key=lambda p: p.observed_at)
        return points

    async def get_statuses(self) -> dict[str, str]:
        """Return ``{entity_id: "Online" | "Offline"}`` for every known entity."""
        body = await self._transport.get_json(STATUS_ENDPOINT)
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise RelayTransportError(f"Expected object from {STATUS_ENDPOINT}", endpoint=STATUS_ENDPOINT)
        statuses: dict[str, str] = {}
        for key, value in body.items():
            try:
                statuses[canonical_entity_id(key)] = str(value)
            except ValueError:
                continue
        return statuses


def _track_point(entity_id: str, entry: Any) -> PositionUpdate | None:
    # Historical entries must carry their own time; receipt time is meaningless here.
    if not isinstance(entry, dict):
        return None
    observed_at = parse_timestamp(entry.get("timestamp"))
    if observed_at is None:
        return None
    return position_from_mapping(entity_id, entry, received_at=observed_at)
