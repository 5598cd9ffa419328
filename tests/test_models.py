"""Tests for the position and subscription models."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pylocrelay.models.position import PositionUpdate
from pylocrelay.models.subscription import ChannelState, ConnectionState, RelayStats

# ------------------------------------------------------------------
# PositionUpdate
# ------------------------------------------------------------------


class TestPositionUpdate:
    def test_parses_live_location_message(self) -> None:
        update = PositionUpdate.model_validate(
            {
                "surveyorId": "sur009",
                "latitude": 12.97,
                "longitude": 77.59,
                "timestamp": "2024-06-01T10:00:00Z",
            }
        )

        assert update.entity_id == "SUR009"
        assert update.latitude == 12.97
        assert update.longitude == 77.59
        assert update.observed_at == datetime(2024, 6, 1, 10, 0, tzinfo=UTC)

    def test_accepts_snake_case_field_names(self) -> None:
        update = PositionUpdate(
            entity_id="SUR001",
            latitude=1,
            longitude=2,
            observed_at=datetime(2024, 1, 1, tzinfo=UTC),
        )

        assert isinstance(update.latitude, float)
        assert update.dedup_key == ("SUR001", datetime(2024, 1, 1, tzinfo=UTC))

    def test_is_immutable(self) -> None:
        update = PositionUpdate(entity_id="S1", latitude=1, longitude=2, observed_at="2024-01-01T00:00:00Z")

        with pytest.raises(ValidationError):
            update.latitude = 3.0  # type: ignore[misc]

    def test_ignores_unknown_fields(self) -> None:
        update = PositionUpdate.model_validate(
            {"entityId": "S1", "latitude": 1, "longitude": 2, "timestamp": 1_717_236_000, "speed": 12}
        )

        assert not hasattr(update, "speed")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"latitude": "12.97"},
            {"latitude": 90.5},
            {"longitude": 180.5},
            {"longitude": False},
            {"timestamp": "not-a-time"},
            {"surveyorId": "  "},
        ],
    )
    def test_rejects_invalid_values(self, overrides: dict[str, object]) -> None:
        data: dict[str, object] = {
            "surveyorId": "S1",
            "latitude": 12.97,
            "longitude": 77.59,
            "timestamp": "2024-06-01T10:00:00Z",
        }
        data.update(overrides)

        with pytest.raises(ValidationError):
            PositionUpdate.model_validate(data)

    def test_equal_fixes_share_dedup_key_across_id_casing(self) -> None:
        first = PositionUpdate(entity_id="sur009", latitude=1, longitude=2, observed_at="2024-06-01T10:00:00Z")
        second = PositionUpdate(entity_id="SUR009", latitude=1.5, longitude=2, observed_at="2024-06-01T10:00:00+00:00")

        assert first.dedup_key == second.dedup_key

    def test_to_wire_layout(self) -> None:
        update = PositionUpdate(entity_id="SUR009", latitude=12.97, longitude=77.59, observed_at=1_717_236_000)

        assert update.to_wire() == {
            "entityId": "SUR009",
            "latitude": 12.97,
            "longitude": 77.59,
            "timestamp": "2024-06-01T10:00:00Z",
        }

    def test_wire_layout_parses_back(self) -> None:
        update = PositionUpdate(entity_id="SUR009", latitude=12.97, longitude=77.59, observed_at=1_717_236_000)

        assert PositionUpdate.model_validate(update.to_wire()) == update


# ------------------------------------------------------------------
# State enums and stats
# ------------------------------------------------------------------


class TestStateModels:
    def test_channel_state_values(self) -> None:
        assert [state.value for state in ChannelState] == ["connecting", "live", "polling", "closed"]
        assert ChannelState("polling") is ChannelState.POLLING

    def test_connection_state_is_string_enum(self) -> None:
        assert ConnectionState.RECONNECTING == "reconnecting"

    def test_stats_start_at_zero_and_are_mutable(self) -> None:
        stats = RelayStats()
        assert all(value == 0 for value in stats.model_dump().values())

        stats.poll_failures += 1

        assert stats.model_dump()["poll_failures"] == 1
