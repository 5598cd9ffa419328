from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

from pylocrelay.api import LocationApi
from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import RelayTransportError

_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeTransport:
    bodies: dict[str, Any] = field(default_factory=dict)
    calls: list[tuple[str, Mapping[str, str] | None]] = field(default_factory=list)

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        self.calls.append((endpoint, params))
        body = self.bodies.get(endpoint)
        if isinstance(body, Exception):
            raise body
        return body


def _api(bodies: dict[str, Any]) -> tuple[LocationApi, FakeTransport]:
    transport = FakeTransport(bodies=bodies)
    return LocationApi(RelayConfig(), transport=transport, clock=lambda: _NOW), transport


def test_requires_session_or_transport() -> None:
    with pytest.raises(ValueError):
        LocationApi(RelayConfig())


@pytest.mark.asyncio
async def test_get_latest_uses_canonical_id_and_receipt_time() -> None:
    api, transport = _api({"/location/SUR010/latest": {"latitude": 1, "longitude": 2}})

    update = await api.get_latest("sur010")

    assert update is not None
    assert update.entity_id == "SUR010"
    assert update.observed_at == _NOW
    assert transport.calls == [("/location/SUR010/latest", None)]


@pytest.mark.asyncio
async def test_get_latest_keeps_reported_timestamp() -> None:
    api, _ = _api(
        {"/location/SUR009/latest": {"latitude": 12.97, "longitude": 77.59, "timestamp": "2024-06-01T10:00:00Z"}}
    )

    update = await api.get_latest("SUR009")

    assert update is not None
    assert update.observed_at == datetime(2024, 6, 1, 10, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_get_latest_without_fix_returns_none() -> None:
    api, _ = _api({})

    assert await api.get_latest("SUR009") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2], {"latitude": "x", "longitude": 2}, {"longitude": 2}])
async def test_get_latest_unusable_body_raises(body: Any) -> None:
    api, _ = _api({"/location/SUR009/latest": body})

    with pytest.raises(RelayTransportError):
        await api.get_latest("SUR009")


@pytest.mark.asyncio
async def test_get_latest_propagates_transport_errors() -> None:
    api, _ = _api({"/location/SUR009/latest": RelayTransportError("HTTP 500", status_code=500)})

    with pytest.raises(RelayTransportError) as exc_info:
        await api.get_latest("SUR009")
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_get_track_sorts_and_skips_unusable_entries() -> None:
    api, transport = _api(
        {
            "/location/SUR009/track": [
                {"latitude": 1.2, "longitude": 2.2, "timestamp": "2024-06-01T10:02:00Z"},
                {"latitude": 1.0, "longitude": 2.0, "timestamp": "2024-06-01T10:00:00Z"},
                {"latitude": 1.1, "longitude": 2.1},
                {"latitude": "bad", "longitude": 2.1, "timestamp": "2024-06-01T10:01:00Z"},
                "garbage",
            ]
        }
    )
    start = datetime(2024, 6, 1, 9, 0, tzinfo=UTC)
    end = datetime(2024, 6, 1, 11, 0, tzinfo=UTC)

    points = await api.get_track("sur009", start, end)

    assert [p.latitude for p in points] == [1.0, 1.2]
    assert all(p.entity_id == "SUR009" for p in points)
    assert transport.calls == [
        ("/location/SUR009/track", {"from": "2024-06-01T09:00:00Z", "to": "2024-06-01T11:00:00Z"})
    ]


@pytest.mark.asyncio
async def test_get_track_rejects_inverted_range() -> None:
    api, transport = _api({})
    start = datetime(2024, 6, 1, 11, 0, tzinfo=UTC)

    with pytest.raises(ValueError):
        await api.get_track("SUR009", start, datetime(2024, 6, 1, 10, 0, tzinfo=UTC))
    assert transport.calls == []


@pytest.mark.asyncio
async def test_get_track_empty_body_is_empty_list() -> None:
    api, _ = _api({})
    at = datetime(2024, 6, 1, 10, 0, tzinfo=UTC)

    assert await api.get_track("SUR009", at, at) == []


@pytest.mark.asyncio
async def test_get_statuses_canonicalizes_keys() -> None:
    api, _ = _api({"/surveyors/status": {"sur009": "Online", "SUR010": "Offline", " ": "Online"}})

    assert await api.get_statuses() == {"SUR009": "Online", "SUR010": "Offline"}
