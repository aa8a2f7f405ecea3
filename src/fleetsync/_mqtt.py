"""Bus port and its MQTT adapters.

The sync engine talks to the device bus only through :class:`MqttPort`
(publish, subscribe, unsubscribe).  Inbound traffic arrives through
:class:`MqttMessageHandler` callbacks as ``(topic, payload)`` strings;
classifying the topic is the bus router's job, not the adapter's.

Adapters:

- :class:`MqttClient` is backed by aiomqtt.  It keeps one background
  connection alive, replays every tracked zone and announcement filter
  after a reconnect, and forgets a filter once it is unsubscribed.
  aiomqtt is imported inside the connection loop only.
- :class:`MockMqttClient` records calls and replays device traffic via
  ``deliver()``.
- :class:`NullMqttClient` drops everything; ``--dry-run`` uses it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from fleetsync._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Awaited once per inbound message with the topic and the decoded payload."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WillConfig:
    """Broker-side will for the bridge status topic.

    The broker publishes it when the bridge drops off without a clean
    shutdown, so dashboards and devices see ``offline``.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """What the sync engine needs from the device bus."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters with a connection lifecycle managed by the bridge."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Bus adapter for dry runs: nothing leaves the process."""

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        logger.debug("Dry run, not publishing to %s", topic)

    async def subscribe(self, topic: str) -> None:
        logger.debug("Dry run, not subscribing to %s", topic)

    async def unsubscribe(self, topic: str) -> None:
        logger.debug("Dry run, not unsubscribing from %s", topic)


# ---------------------------------------------------------------------------
# Test double
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """Bus double for tests.

    ``published`` holds ``(topic, payload, retain, qos)`` tuples.
    ``active_subscriptions`` is the set of filters still subscribed.
    ``deliver()`` plays a device message into the registered
    callbacks.  With ``fail_publish`` every publish raises
    ``ConnectionError``.
    """

    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    unsubscriptions: list[str] = field(default_factory=list)
    fail_publish: bool = False
    _active: set[str] = field(default_factory=set, init=False, repr=False)
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        if self.fail_publish:
            msg = f"simulated publish failure on {topic}"
            raise ConnectionError(msg)
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)
        self._active.add(topic)

    async def unsubscribe(self, topic: str) -> None:
        self.unsubscriptions.append(topic)
        self._active.discard(topic)

    # -- Test helpers -------------------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        """Play a device message through every registered callback."""
        for cb in self._callbacks:
            await cb(topic, payload)

    @property
    def publish_count(self) -> int:
        """How many messages the core has published."""
        return len(self.published)

    @property
    def active_subscriptions(self) -> set[str]:
        """Filters subscribed and not since unsubscribed."""
        return set(self._active)

    def reset(self) -> None:
        """Forget recorded traffic and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self.unsubscriptions.clear()
        self._active.clear()
        self._callbacks.clear()

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """aiomqtt adapter used by a running bridge.

    A background task owns the broker connection.  After a failure it
    waits ``reconnect_interval`` seconds, doubling (with jitter) on each
    further failure up to ``reconnect_max_interval``, then reconnects
    and replays :attr:`tracked_filters`.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(default_factory=list, init=False, repr=False)
    _filters: set[str] = field(default_factory=set, init=False, repr=False)
    _client: Any = field(default=None, init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _connected: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _stopping: bool = field(default=False, init=False, repr=False)
    _failures: int = field(default=0, init=False, repr=False)

    @property
    def tracked_filters(self) -> set[str]:
        """Filters replayed on every (re)connect."""
        return set(self._filters)

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -- Bus port -------------------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish *payload* on *topic*.

        Raises:
            RuntimeError: While the broker connection is down.  The
                bus façade logs this and moves on.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Track *topic* and subscribe now if connected."""
        self._filters.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    async def unsubscribe(self, topic: str) -> None:
        """Forget *topic* and unsubscribe now if connected."""
        self._filters.discard(topic)
        if self._client is not None:
            await self._client.unsubscribe(topic)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    # -- Lifecycle --------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the connection task; a second call while running is ignored."""
        if self._task is not None and not self._task.done():
            logger.debug("MQTT connection task already running")
            return
        self._stopping = False
        self._task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Cancel the connection task.  Safe to call more than once."""
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._client = None
        self._connected.clear()

    # -- Internal ---------------------------------------------------------------

    def _next_delay(self) -> float:
        """Backoff delay for the current failure streak, with jitter."""
        base = self.settings.reconnect_interval * (2 ** max(self._failures - 1, 0))
        capped = min(base, self.settings.reconnect_max_interval)
        return capped * random.uniform(0.5, 1.0)  # noqa: S311

    def _client_kwargs(self, aiomqtt: Any) -> dict[str, Any]:
        password = None
        if self.settings.password is not None:
            password = self.settings.password.get_secret_value()
        will = None
        if self.will is not None:
            will = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
        return {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.username,
            "password": password,
            "identifier": self.settings.client_id or None,
            "will": will,
        }

    async def _session(self, client: Any) -> None:
        """Replay tracked filters, then pump messages until the link drops."""
        self._client = client
        try:
            for topic in sorted(self._filters):
                await client.subscribe(topic, qos=self.settings.qos)
            self._connected.set()
            self._failures = 0
            logger.info(
                "MQTT connected to %s:%d (%d filter(s) restored)",
                self.settings.host,
                self.settings.port,
                len(self._filters),
            )
            async for message in client.messages:
                await self._dispatch(message)
        finally:
            self._connected.clear()
            self._client = None

    async def _connection_loop(self) -> None:
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        while not self._stopping:
            try:
                async with aiomqtt.Client(**self._client_kwargs(aiomqtt)) as client:
                    await self._session(client)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._failures += 1
                delay = self._next_delay()
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def _dispatch(self, message: Any) -> None:
        """Hand one inbound message to every callback as UTF-8 text.

        Empty and undecodable payloads never reach the router.  A
        failing callback is logged and the others still run.
        """
        topic = str(message.topic)
        raw = message.payload
        if raw is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return
        if isinstance(raw, (bytes, bytearray)):
            try:
                payload = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Skipping non-UTF-8 payload on %s", topic)
                return
        else:
            payload = str(raw)

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
