"""Broker and push-channel interfaces, plus an in-process broker.

A :class:`PushChannel` is one physical connection to a message broker. The
subscription manager multiplexes every topic it needs over a single
channel. :class:`LocalBroker` implements both the publishing side
(:class:`Broker`) and channels for it, for single-process deployments and
tests. The paho-mqtt implementations live in :mod:`pylocrelay._mqtt`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from pylocrelay.exceptions import ChannelError

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]
"""``(topic, payload)`` callback, invoked on the event loop."""

DisconnectHandler = Callable[[str], None]
"""``(reason)`` callback for an unexpected connection loss, invoked on the event loop."""


class Broker(Protocol):
    """Publishing side of a message broker."""

    def publish(self, topic: str, payload: bytes) -> None:
        ...


class PushChannel(Protocol):
    """One subscriber connection to a message broker.

    ``connect`` and ``subscribe`` return only once the broker has
    acknowledged them and raise :class:`~pylocrelay.exceptions.ChannelError`
    on refusal. After the channel reports a disconnect it is not reused;
    the owner closes it and builds a fresh one.
    """

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    async def subscribe(self, topic: str) -> None:
        ...

    async def unsubscribe(self, topic: str) -> None:
        ...

    async def close(self) -> None:
        ...


ChannelFactory = Callable[[MessageHandler, DisconnectHandler], PushChannel]


class LocalChannel:
    """Channel attached to a :class:`LocalBroker`."""

    def __init__(self, broker: LocalBroker, on_message: MessageHandler, on_disconnect: DisconnectHandler) -> None:
        self._broker = broker
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._topics: set[str] = set()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    async def connect(self) -> None:
        if not self._broker.accepting:
            raise ChannelError("Local broker is not accepting connections")
        self._broker._attach(self)
        self._connected = True

    async def subscribe(self, topic: str) -> None:
        if not self._connected:
            raise ChannelError("Channel is not connected", topic=topic)
        self._topics.add(topic)

    async def unsubscribe(self, topic: str) -> None:
        self._topics.discard(topic)

    async def close(self) -> None:
        self._connected = False
        self._topics.clear()
        self._broker._detach(self)

    def _deliver(self, topic: str, payload: bytes) -> None:
        if self._connected and topic in self._topics:
            self._on_message(topic, payload)

    def _drop(self, reason: str) -> None:
        if not self._connected:
            return
        self._connected = False
        self._topics.clear()
        self._on_disconnect(reason)


class LocalBroker:
    """In-process broker.

    Delivery is synchronous and in publish order, so per-topic ordering is
    exactly the order of :meth:`publish` calls. A failing subscriber does
    not affect delivery to the others. Not thread-safe: use it from the
    event loop thread.
    """

    def __init__(self) -> None:
        self._channels: list[LocalChannel] = []
        self.accepting = True

    def channel_factory(self, on_message: MessageHandler, on_disconnect: DisconnectHandler) -> LocalChannel:
        """:data:`ChannelFactory` producing channels bound to this broker."""
        return LocalChannel(self, on_message, on_disconnect)

    def publish(self, topic: str, payload: bytes) -> None:
        for channel in list(self._channels):
            try:
                channel._deliver(topic, payload)
            except Exception:
                _logger.debug("Local delivery failed topic=%s", topic, exc_info=True)

    def subscriber_count(self, topic: str) -> int:
        """Number of connected channels subscribed to *topic*."""
        return sum(1 for channel in self._channels if topic in channel.topics)

    @property
    def connection_count(self) -> int:
        return len(self._channels)

    def disconnect_all(self, reason: str = "broker shutdown") -> None:
        """Drop every attached channel, notifying their owners."""
        channels = list(self._channels)
        self._channels.clear()
        for channel in channels:
            channel._drop(reason)

    def _attach(self, channel: LocalChannel) -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def _detach(self, channel: LocalChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
