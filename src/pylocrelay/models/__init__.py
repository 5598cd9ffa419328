"""Data models for relayed positions and subscription state."""

from pylocrelay.models.position import PositionUpdate
from pylocrelay.models.subscription import ChannelState, ConnectionState, RelayStats

__all__ = [
    "ChannelState",
    "ConnectionState",
    "PositionUpdate",
    "RelayStats",
]
