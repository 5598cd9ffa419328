"""paho-mqtt push channel and broker publisher.

paho runs its network loop on its own thread; every callback hops back onto
the asyncio loop through ``call_soon_threadsafe`` before touching relay
state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import Any, cast

import paho.mqtt.client as mqtt

from pylocrelay.broker import ChannelFactory, DisconnectHandler, MessageHandler
from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import ChannelError


def _build_client(config: RelayConfig, client_id: str, logger: logging.Logger) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv5,
        transport=config.broker_transport,
    )
    client.enable_logger(logger)
    if config.broker_transport == "websockets":
        client.ws_set_options(path=config.broker_ws_path)
    if config.broker_username:
        client.username_pw_set(config.broker_username, config.broker_password)
    if config.broker_tls:
        client.tls_set()
    return client


def _new_client_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class MqttPushChannel:
    """Threaded paho-mqtt subscriber connection for one observer process."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        on_message: MessageHandler,
        on_disconnect: DisconnectHandler,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._client_id = client_id or _new_client_id("relay-sub")
        self._logger = logger or logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._connected = False
        self._closing = False
        self._connect_future: asyncio.Future[None] | None = None
        # Guards _suback_futures between the caller and paho's network thread.
        self._lock = threading.Lock()
        self._suback_futures: dict[int, asyncio.Future[None]] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the connection and wait for CONNACK."""
        if self._client is not None:
            raise ChannelError("MQTT channel already used; build a new one")
        loop = asyncio.get_running_loop()
        self._loop = loop
        client = _build_client(self._config, self._client_id, self._logger)
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_subscribe = self._handle_subscribe
        client.on_message = self._handle_message
        self._client = client
        self._connect_future = loop.create_future()

        self._logger.debug(
            "MQTT connect host=%s port=%s transport=%s client_id=%s",
            self._config.broker_host,
            self._config.broker_port,
            self._config.broker_transport,
            self._client_id,
        )
        try:
            await loop.run_in_executor(None, self._start_network, client)
        except OSError as exc:
            raise ChannelError(f"MQTT connect failed: {exc}") from exc
        await self._connect_future

    def _start_network(self, client: mqtt.Client) -> None:
        client.connect(self._config.broker_host, self._config.broker_port, keepalive=self._config.broker_keepalive)
        client.loop_start()

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic* and wait for SUBACK."""
        client = self._client
        loop = self._loop
        if client is None or loop is None or not self._connected:
            raise ChannelError("MQTT channel is not connected", topic=topic)
        future: asyncio.Future[None] = loop.create_future()
        with self._lock:
            result, mid = client.subscribe(topic, qos=1)
            if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
                raise ChannelError(f"MQTT subscribe rejected locally: rc={result}", topic=topic)
            self._suback_futures[mid] = future
        self._logger.debug("MQTT subscribe topic=%s mid=%s", topic, mid)
        try:
            await future
        finally:
            with self._lock:
                self._suback_futures.pop(mid, None)

    async def unsubscribe(self, topic: str) -> None:
        client = self._client
        if client is None or not self._connected:
            return
        self._logger.debug("MQTT unsubscribe topic=%s", topic)
        client.unsubscribe(topic)

    async def close(self) -> None:
        """Disconnect and stop the network thread."""
        client = self._client
        self._closing = True
        was_connected = self._connected
        self._connected = False
        self._fail_pending(ChannelError("MQTT channel closed"))
        if client is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, self._stop_network, client, was_connected)

    def _stop_network(self, client: mqtt.Client, was_connected: bool) -> None:
        try:
            if was_connected:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped client_id=%s", self._client_id)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _call_soon(self, callback: Any, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _handle_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            self._logger.warning("MQTT connect refused: %s", reason_code)
            self._call_soon(self._resolve_connect, ChannelError(f"MQTT connect refused: {reason_code}"))
            return
        self._logger.debug("MQTT connected reason=%s", reason_code)
        self._call_soon(self._resolve_connect, None)

    def _resolve_connect(self, error: ChannelError | None) -> None:
        future = self._connect_future
        if error is None and not self._closing:
            self._connected = True
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def _handle_subscribe(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        mid: int,
        reason_codes: list[Any],
        _properties: Any,
    ) -> None:
        with self._lock:
            future = self._suback_futures.get(mid)
        if future is None:
            return
        failed = [rc for rc in reason_codes if getattr(rc, "is_failure", False)]
        error = ChannelError(f"MQTT subscribe refused: {failed[0]}") if failed else None
        self._call_soon(self._resolve_future, future, error)

    @staticmethod
    def _resolve_future(future: asyncio.Future[None], error: ChannelError | None) -> None:
        if future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def _handle_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        self._call_soon(self._on_message, msg.topic, bytes(msg.payload))

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if self._closing:
            return
        self._logger.debug("MQTT disconnected: %s", reason_code)
        # Channels are single-use; the owner builds a fresh one to reconnect.
        client.loop_stop()
        self._call_soon(self._report_disconnect, str(reason_code))

    def _report_disconnect(self, reason: str) -> None:
        was_connected = self._connected
        self._connected = False
        self._fail_pending(ChannelError(f"MQTT disconnected: {reason}"))
        if was_connected and not self._closing:
            self._on_disconnect(reason)

    def _fail_pending(self, error: ChannelError) -> None:
        with self._lock:
            pending = list(self._suback_futures.values())
        connect_future = self._connect_future
        if connect_future is not None:
            pending.append(connect_future)
        for future in pending:
            if not future.done():
                future.set_exception(error)


def mqtt_channel_factory(config: RelayConfig, *, logger: logging.Logger | None = None) -> ChannelFactory:
    """Return a :data:`~pylocrelay.broker.ChannelFactory` building MQTT channels."""

    def _factory(on_message: MessageHandler, on_disconnect: DisconnectHandler) -> MqttPushChannel:
        return MqttPushChannel(config, on_message=on_message, on_disconnect=on_disconnect, logger=logger)

    return _factory


class MqttBroker:
    """paho-mqtt publisher implementing :class:`~pylocrelay.broker.Broker`.

    Messages are published with QoS 1; the broker preserves per-topic order
    for a single publishing client.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._client_id = client_id or _new_client_id("relay-pub")
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def start(self) -> None:
        """Connect and start the network loop (blocking connect)."""
        self.stop()
        client = _build_client(self._config, self._client_id, self._logger)
        client.connect(self._config.broker_host, self._config.broker_port, keepalive=self._config.broker_keepalive)
        client.loop_start()
        self._client = client
        self._logger.debug("MQTT publisher started client_id=%s", self._client_id)

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    def publish(self, topic: str, payload: bytes) -> None:
        client = self._client
        if client is None:
            raise ChannelError("MQTT publisher is not started", topic=topic)
        info = client.publish(topic, payload, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ChannelError(f"MQTT publish failed: rc={info.rc}", topic=topic)
