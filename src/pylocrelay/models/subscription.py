"""Subscription and connection state models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class ChannelState(StrEnum):
    """Delivery state of one subscription."""

    CONNECTING = "connecting"
    LIVE = "live"
    POLLING = "polling"
    CLOSED = "closed"


class ConnectionState(StrEnum):
    """Lifecycle of the shared push connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class RelayStats(BaseModel):
    """Degraded-service counters.

    Transient failures never reach observers as exceptions; they are
    counted here instead so they stay observable.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=False)

    delivered: int = 0
    duplicates_suppressed: int = 0
    handshake_failures: int = 0
    channel_drops: int = 0
    poll_failures: int = 0
    malformed_messages: int = 0
    callback_errors: int = 0
    promotions: int = 0
