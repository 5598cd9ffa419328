"""Subscription manager: per-observer entity subscriptions over one shared push channel.

Owns:
- the shared push connection (reference-counted by active subscriptions)
- per-entity topic subscriptions multiplexed over that connection
- the per-subscription state machine (connecting -> live / polling -> closed)
- polling fallback, duplicate suppression, and promotion back to push
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from pylocrelay._constants import entity_from_topic, topic_for
from pylocrelay.broker import ChannelFactory, PushChannel
from pylocrelay.config import RelayConfig
from pylocrelay.dedup import RecencyWindow
from pylocrelay.exceptions import ChannelError, HandshakeTimeoutError, RelayError
from pylocrelay.ingestion.normalize import canonical_entity_id
from pylocrelay.ingestion.payload import parse_position_payload
from pylocrelay.models.position import PositionUpdate
from pylocrelay.models.subscription import ChannelState, ConnectionState, RelayStats

_logger = logging.getLogger(__name__)

OnUpdate = Callable[[str, PositionUpdate], None]
"""``(entity_id, update)`` observer callback."""

OnStateChange = Callable[["Subscription", ChannelState, ChannelState], None]
"""``(subscription, old_state, new_state)`` callback."""


class LatestPositionSource(Protocol):
    """Polling backend; :class:`~pylocrelay.api.LocationApi` implements it."""

    async def get_latest(self, entity_id: str) -> PositionUpdate | None:
        ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    if not task.cancelled():
        task.exception()


class Subscription:
    """One observer's interest in one entity."""

    def __init__(self, observer_id: str, entity_id: str, on_update: OnUpdate, dedup_window: int) -> None:
        self.observer_id = observer_id
        self.entity_id = entity_id
        self._on_update = on_update
        self._state = ChannelState.CONNECTING
        self._recent = RecencyWindow(dedup_window)
        self._handshake_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def channel_state(self) -> ChannelState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is ChannelState.CLOSED

    def __repr__(self) -> str:
        return (
            f"Subscription(observer_id={self.observer_id!r}, entity_id={self.entity_id!r}, "
            f"state={self._state.value})"
        )


@dataclass(frozen=True)
class SubscriptionHandle:
    """Returned by :meth:`SubscriptionManager.subscribe`; pass it to ``unsubscribe``."""

    observer_id: str
    entity_ids: frozenset[str]
    token: int
    _subscriptions: tuple[Subscription, ...] = field(repr=False, compare=False)
    _issuer: SubscriptionManager = field(repr=False, compare=False)

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        return self._subscriptions


class SubscriptionManager:
    """Deliver live position updates for many observers and entities.

    All public methods other than :meth:`aclose` are synchronous and
    non-blocking; they must be called from inside the running event loop.
    Handshakes, polling, and promotion run as background tasks and report
    through ``on_update`` callbacks and subscription state.

    Usage::

        broker = LocalBroker()
        async with SubscriptionManager(broker.channel_factory, api) as manager:
            handle = manager.subscribe("dashboard-1", {"SUR009"}, on_update)
            ...
            manager.unsubscribe(handle)
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        api: LatestPositionSource,
        *,
        config: RelayConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_state_change: OnStateChange | None = None,
    ) -> None:
        self._channel_factory = channel_factory
        self._api = api
        self._config = config or RelayConfig()
        self._clock = clock
        self._on_state_change = on_state_change
        self._stats = RelayStats()
        self._loop: asyncio.AbstractEventLoop | None = None

        self._subs: dict[tuple[str, str], Subscription] = {}
        self._tokens = itertools.count(1)

        self._channel: PushChannel | None = None
        self._connection_state = ConnectionState.CLOSED
        # Bumped whenever the current channel is replaced; stale callbacks compare against it.
        self._generation = 0
        self._connect_task: asyncio.Task[PushChannel] | None = None
        self._topic_tasks: dict[str, asyncio.Task[None]] = {}
        self._promotion_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SubscriptionManager:
        self._loop = asyncio.get_running_loop()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close every subscription and the shared connection."""
        self._closed = True
        for sub in list(self._subs.values()):
            self._close_subscription(sub)
        self._release_connection()
        pending = list(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def stats(self) -> RelayStats:
        return self._stats

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def connection_refs(self) -> int:
        """Active subscriptions holding the shared connection."""
        return len(self._subs)

    def get_subscription(self, observer_id: str, entity_id: str) -> Subscription | None:
        return self._subs.get((observer_id.strip(), canonical_entity_id(entity_id)))

    def subscriptions(self, observer_id: str | None = None) -> list[Subscription]:
        return [sub for sub in self._subs.values() if observer_id is None or sub.observer_id == observer_id]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def subscribe(self, observer_id: str, entity_ids: Iterable[str], on_update: OnUpdate) -> SubscriptionHandle:
        """Start delivering updates for *entity_ids* to *on_update*.

        Ids the observer already holds are left untouched (the existing
        subscription keeps its callback). Raises :class:`ValueError` when
        *entity_ids* is empty or contains a blank id.
        """
        if self._closed:
            raise RelayError("SubscriptionManager is closed")
        observer = observer_id.strip() if isinstance(observer_id, str) else ""
        if not observer:
            raise ValueError("observer_id must be non-empty")
        if isinstance(entity_ids, str):
            raise ValueError("entity_ids must be a collection of ids, not a single string")
        canonical = frozenset(canonical_entity_id(entity_id) for entity_id in entity_ids)
        if not canonical:
            raise ValueError("entity_ids must be non-empty")
        self._loop = asyncio.get_running_loop()

        subs: list[Subscription] = []
        for entity_id in sorted(canonical):
            existing = self._subs.get((observer, entity_id))
            if existing is not None:
                subs.append(existing)
                continue
            sub = Subscription(observer, entity_id, on_update, self._config.dedup_window)
            self._subs[(observer, entity_id)] = sub
            _logger.debug("Subscribe observer=%s entity=%s", observer, entity_id)
            sub._handshake_task = self._spawn(self._handshake(sub))
            subs.append(sub)

        return SubscriptionHandle(observer, canonical, next(self._tokens), tuple(subs), self)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Close every subscription under *handle*. Safe to call repeatedly."""
        if not isinstance(handle, SubscriptionHandle) or handle._issuer is not self:
            raise ValueError("Unknown subscription handle")
        for sub in handle.subscriptions:
            if self._subs.get((sub.observer_id, sub.entity_id)) is sub:
                self._close_subscription(sub)
        if not self._subs:
            self._release_connection()

    def unsubscribe_observer(self, observer_id: str) -> None:
        """Close everything *observer_id* holds (observer disconnected)."""
        for sub in self.subscriptions(observer_id):
            self._close_subscription(sub)
        if not self._subs:
            self._release_connection()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = self._require_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_retrieve_exception)
        return task

    def _set_state(self, sub: Subscription, new: ChannelState) -> None:
        old = sub._state
        if old is new:
            return
        sub._state = new
        if new is ChannelState.POLLING:
            _logger.warning(
                "Push unavailable for observer=%s entity=%s; polling fallback active",
                sub.observer_id,
                sub.entity_id,
            )
        else:
            _logger.debug("State observer=%s entity=%s %s -> %s", sub.observer_id, sub.entity_id, old.value, new.value)
        if self._on_state_change is not None:
            try:
                self._on_state_change(sub, old, new)
            except Exception:
                _logger.debug("on_state_change callback failed", exc_info=True)

    def _close_subscription(self, sub: Subscription) -> None:
        if sub.is_closed:
            return
        self._set_state(sub, ChannelState.CLOSED)
        for task in (sub._handshake_task, sub._poll_task):
            if task is not None and not task.done():
                task.cancel()
        sub._handshake_task = None
        sub._poll_task = None
        sub._recent.clear()
        self._subs.pop((sub.observer_id, sub.entity_id), None)
        _logger.debug("Unsubscribe observer=%s entity=%s", sub.observer_id, sub.entity_id)

        if not any(other.entity_id == sub.entity_id for other in self._subs.values()):
            self._release_topic(sub.entity_id)

    def _deliver(self, sub: Subscription, update: PositionUpdate) -> None:
        if sub.is_closed:
            return
        if not sub._recent.admit(update.dedup_key):
            self._stats.duplicates_suppressed += 1
            return
        try:
            sub._on_update(sub.entity_id, update)
        except Exception:
            self._stats.callback_errors += 1
            _logger.debug(
                "on_update callback failed observer=%s entity=%s",
                sub.observer_id,
                sub.entity_id,
                exc_info=True,
            )
            return
        self._stats.delivered += 1

    # ------------------------------------------------------------------
    # Shared connection and topics
    # ------------------------------------------------------------------

    async def _ensure_connected(self) -> PushChannel:
        channel = self._channel
        if channel is not None and channel.is_connected:
            return channel
        task = self._connect_task
        if task is None or task.done():
            task = self._spawn(self._open_channel())
            self._connect_task = task
        # Shielded: one subscriber's handshake timeout must not cancel the shared connect.
        return await asyncio.shield(task)

    async def _open_channel(self) -> PushChannel:
        self._generation += 1
        generation = self._generation
        previous = self._channel
        self._topic_tasks = {}
        if self._connection_state is ConnectionState.DISCONNECTED:
            self._connection_state = ConnectionState.RECONNECTING
        else:
            self._connection_state = ConnectionState.CONNECTING

        def on_message(topic: str, payload: bytes) -> None:
            self._handle_message(generation, topic, payload)

        def on_disconnect(reason: str) -> None:
            self._handle_disconnect(generation, reason)

        channel = self._channel_factory(on_message, on_disconnect)
        self._channel = channel
        if previous is not None:
            self._spawn(self._discard_channel(previous))

        try:
            await asyncio.wait_for(channel.connect(), self._config.handshake_timeout)
        except BaseException as exc:
            if self._generation == generation:
                self._channel = None
                self._connection_state = ConnectionState.DISCONNECTED
            await self._discard_channel(channel)
            if isinstance(exc, TimeoutError):
                raise HandshakeTimeoutError("Push channel connect timed out") from exc
            raise

        if self._generation != generation:
            await self._discard_channel(channel)
            raise ChannelError("Push channel released while connecting")
        self._connection_state = ConnectionState.CONNECTED
        _logger.debug("Push channel connected")
        return channel

    async def _ensure_topic(self, entity_id: str) -> None:
        channel = await self._ensure_connected()
        task = self._topic_tasks.get(entity_id)
        if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
            task = self._spawn(channel.subscribe(topic_for(entity_id, self._config.topic_prefix)))
            self._topic_tasks[entity_id] = task
        await asyncio.shield(task)

    def _release_topic(self, entity_id: str) -> None:
        task = self._topic_tasks.pop(entity_id, None)
        if task is not None and not task.done():
            task.cancel()
        channel = self._channel
        if task is not None and channel is not None and channel.is_connected:
            self._spawn(self._unsubscribe_topic(channel, entity_id))

    async def _unsubscribe_topic(self, channel: PushChannel, entity_id: str) -> None:
        try:
            await channel.unsubscribe(topic_for(entity_id, self._config.topic_prefix))
        except Exception:
            _logger.debug("Topic unsubscribe failed entity=%s", entity_id, exc_info=True)

    def _release_connection(self) -> None:
        """Drop the shared connection once no subscription holds it."""
        self._generation += 1
        for task in (self._connect_task, self._promotion_task, *self._topic_tasks.values()):
            if task is not None and not task.done():
                task.cancel()
        self._connect_task = None
        self._promotion_task = None
        self._topic_tasks = {}
        channel = self._channel
        self._channel = None
        if channel is not None:
            self._spawn(self._discard_channel(channel))
            _logger.debug("Push channel released")
        self._connection_state = ConnectionState.CLOSED

    @staticmethod
    async def _discard_channel(channel: PushChannel) -> None:
        try:
            await channel.close()
        except Exception:
            _logger.debug("Push channel close failed", exc_info=True)

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    def _handle_message(self, generation: int, topic: str, payload: bytes) -> None:
        if generation != self._generation:
            return
        raw_entity = entity_from_topic(topic, self._config.topic_prefix)
        if raw_entity is None:
            return
        entity_id = canonical_entity_id(raw_entity)
        update = parse_position_payload(entity_id, payload, received_at=self._clock())
        if update is None:
            self._stats.malformed_messages += 1
            _logger.debug("Dropped malformed push message topic=%s", topic)
            return
        live = [s for s in self._subs.values() if s.entity_id == entity_id and s.channel_state is ChannelState.LIVE]
        for sub in live:
            self._deliver(sub, update)

    def _handle_disconnect(self, generation: int, reason: str) -> None:
        if generation != self._generation:
            return
        self._generation += 1
        self._stats.channel_drops += 1
        _logger.warning("Push channel lost: %s", reason)
        channel = self._channel
        self._channel = None
        self._topic_tasks = {}
        self._connection_state = ConnectionState.DISCONNECTED
        if channel is not None:
            self._spawn(self._discard_channel(channel))

        for sub in list(self._subs.values()):
            if sub.channel_state is ChannelState.CONNECTING:
                if sub._handshake_task is not None and not sub._handshake_task.done():
                    sub._handshake_task.cancel()
                sub._handshake_task = None
                self._enter_polling(sub)
            elif sub.channel_state is ChannelState.LIVE:
                self._enter_polling(sub)

    # ------------------------------------------------------------------
    # Handshake, polling, promotion
    # ------------------------------------------------------------------

    async def _handshake(self, sub: Subscription) -> None:
        try:
            await asyncio.wait_for(self._ensure_topic(sub.entity_id), self._config.handshake_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if sub.channel_state is not ChannelState.CONNECTING:
                return
            self._stats.handshake_failures += 1
            _logger.debug("Handshake failed observer=%s entity=%s: %r", sub.observer_id, sub.entity_id, exc)
            self._enter_polling(sub)
            return
        if sub.channel_state is ChannelState.CONNECTING:
            self._set_state(sub, ChannelState.LIVE)

    def _enter_polling(self, sub: Subscription) -> None:
        if sub.is_closed:
            return
        self._set_state(sub, ChannelState.POLLING)
        if sub._poll_task is None or sub._poll_task.done():
            sub._poll_task = self._spawn(self._poll_loop(sub))
        self._schedule_promotion()

    async def _poll_loop(self, sub: Subscription) -> None:
        interval = self._config.poll_interval
        while sub.channel_state is ChannelState.POLLING:
            await asyncio.sleep(interval)
            if sub.channel_state is not ChannelState.POLLING:
                return
            try:
                update = await self._api.get_latest(sub.entity_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._stats.poll_failures += 1
                _logger.debug("Poll failed entity=%s", sub.entity_id, exc_info=True)
                continue
            if update is not None:
                self._deliver(sub, update)

    def _schedule_promotion(self) -> None:
        if not self._config.promote_to_push or self._closed:
            return
        task = self._promotion_task
        if task is None or task.done():
            self._promotion_task = self._spawn(self._promotion_loop())

    def _polling_entities(self) -> list[str]:
        return sorted({sub.entity_id for sub in self._subs.values() if sub.channel_state is ChannelState.POLLING})

    async def _promotion_loop(self) -> None:
        delay = self._config.reconnect_initial_delay
        while self._polling_entities():
            await asyncio.sleep(delay)
            failures = 0
            for entity_id in self._polling_entities():
                # Earlier attempts in this round may have outlived the entity's last polling subscriber.
                if entity_id not in self._polling_entities():
                    continue
                if not await self._attempt_promotion(entity_id) and entity_id in self._polling_entities():
                    failures += 1
            if failures:
                delay = min(delay * 2, self._config.reconnect_max_delay)
            else:
                delay = self._config.reconnect_initial_delay

    async def _attempt_promotion(self, entity_id: str) -> bool:
        try:
            await asyncio.wait_for(self._ensure_topic(entity_id), self._config.handshake_timeout)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # The shared topic task was cancelled under us (its last subscriber left).
            _logger.debug("Promotion attempt interrupted entity=%s", entity_id)
            return False
        except Exception as exc:
            _logger.debug("Promotion attempt failed entity=%s: %r", entity_id, exc)
            return False
        for sub in [s for s in self._subs.values() if s.entity_id == entity_id]:
            if sub.channel_state is ChannelState.POLLING:
                self._promote(sub)
        return True

    def _promote(self, sub: Subscription) -> None:
        task = sub._poll_task
        sub._poll_task = None
        if task is not None and not task.done():
            task.cancel()
        self._set_state(sub, ChannelState.LIVE)
        self._stats.promotions += 1
        _logger.info("Push restored observer=%s entity=%s", sub.observer_id, sub.entity_id)
