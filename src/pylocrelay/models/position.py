"""Position update model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pylocrelay.ingestion.normalize import canonical_entity_id, format_timestamp, parse_timestamp, safe_float


class PositionUpdate(BaseModel):
    """One accepted GPS fix for one entity.

    Immutable once created. Wire payloads may use camelCase or the
    dashboard's short coordinate names; all of them map onto the
    snake_case fields below.

    Parameters
    ----------
    entity_id : str
        Canonical (upper-cased) entity id.
    latitude : float
        Latitude in degrees, -90..90.
    longitude : float
        Longitude in degrees, -180..180.
    observed_at : datetime
        Fix time, always timezone-aware UTC.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    entity_id: str = Field(validation_alias=AliasChoices("entity_id", "entityId", "surveyorId"))
    latitude: float = Field(ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(ge=-180.0, le=180.0, validation_alias=AliasChoices("longitude", "lon", "lng"))
    observed_at: datetime = Field(validation_alias=AliasChoices("observed_at", "observedAt", "timestamp"))

    @field_validator("entity_id", mode="before")
    @classmethod
    def _canonical_entity(cls, value: Any) -> str:
        return canonical_entity_id(value)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _numeric_coordinate(cls, value: Any) -> float:
        parsed = safe_float(value)
        if parsed is None:
            raise ValueError("coordinate must be a finite number")
        return parsed

    @field_validator("observed_at", mode="before")
    @classmethod
    def _utc_timestamp(cls, value: Any) -> datetime:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"unparseable timestamp: {value!r}")
        return parsed

    @property
    def dedup_key(self) -> tuple[str, datetime]:
        """Identity of this fix for duplicate suppression."""
        return (self.entity_id, self.observed_at)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict in the broker message layout."""
        return {
            "entityId": self.entity_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": format_timestamp(self.observed_at),
        }
