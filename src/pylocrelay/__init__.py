"""pylocrelay - Async relay for live per-entity location updates."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylocrelay")
except PackageNotFoundError:
    __version__ = "0+local"
from pylocrelay._mqtt import MqttBroker, MqttPushChannel, mqtt_channel_factory
from pylocrelay.api import LocationApi
from pylocrelay.broker import Broker, ChannelFactory, LocalBroker, PushChannel
from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import (
    ChannelError,
    HandshakeTimeoutError,
    RelayConfigError,
    RelayError,
    RelayTransportError,
)
from pylocrelay.ingestion.normalize import canonical_entity_id
from pylocrelay.models import ChannelState, ConnectionState, PositionUpdate, RelayStats
from pylocrelay.publisher import Publisher
from pylocrelay.subscriptions import Subscription, SubscriptionHandle, SubscriptionManager

__all__ = [
    "__version__",
    "Broker",
    "ChannelError",
    "ChannelFactory",
    "ChannelState",
    "ConnectionState",
    "HandshakeTimeoutError",
    "LocalBroker",
    "LocationApi",
    "MqttBroker",
    "MqttPushChannel",
    "PositionUpdate",
    "Publisher",
    "PushChannel",
    "RelayConfig",
    "RelayConfigError",
    "RelayError",
    "RelayStats",
    "RelayTransportError",
    "Subscription",
    "SubscriptionHandle",
    "SubscriptionManager",
    "canonical_entity_id",
    "mqtt_channel_factory",
]
