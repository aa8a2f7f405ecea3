"""Device registry and synchronisation engine.

:class:`SyncEngine` owns one registry and wires it to a bus port and a
client port::

    bus message ─► BusRouter ─┐
    client intent ─► CommandHandler ─┼─► DeviceRegistry ─► StateBroadcaster ─► clients
    liveness tick ─► LivenessMonitor ─┘

Every component is constructed here from explicit collaborators, so
tests drive the whole engine with ``MockMqttClient``,
``MockClientHub`` and ``FakeClock``.

Client intents::

    register(data)                 data = {id, local, input, output}
    requestState()
    pushOutputState(id, value)     or pushOutputState({id, value})
    delete(id)
    message(...)                   relayed verbatim to every session

A failing intent is reported to the issuing session as an ``error``
event and affects nothing else.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fleetsync._broadcast import StateBroadcaster
from fleetsync._bus import BusCommands
from fleetsync._clients import ClientPort, ClientSession
from fleetsync._clock import ClockPort
from fleetsync._commands import CommandHandler
from fleetsync._errors import ErrorReporter, FleetSyncError, MalformedPayloadError
from fleetsync._liveness import LivenessMonitor
from fleetsync._mqtt import MqttMessageHandler, MqttPort
from fleetsync._payloads import OutputCommand, RegistrationIntent, parse_payload
from fleetsync._registry import DeviceRegistry
from fleetsync._router import BusRouter
from fleetsync._settings import RegistrySettings
from fleetsync._topics import TopicMatcher

logger = logging.getLogger(__name__)

INTENT_REGISTER = "register"
INTENT_REQUEST_STATE = "requestState"
INTENT_PUSH_OUTPUT = "pushOutputState"
INTENT_DELETE = "delete"
INTENT_MESSAGE = "message"


class SyncEngine:
    """Composition of the registry and everything that mutates it.

    Args:
        mqtt: Bus port.
        clients: Client push port.
        clock: Time source for activity stamps and sweeps.
        namespace: Topic namespace.
        registry_settings: Liveness configuration; defaults apply when
            omitted.
        qos: QoS for directives published by the engine.
    """

    def __init__(
        self,
        *,
        mqtt: MqttPort,
        clients: ClientPort,
        clock: ClockPort,
        namespace: str,
        registry_settings: RegistrySettings | None = None,
        qos: int = 1,
    ) -> None:
        config = registry_settings or RegistrySettings()
        self._mqtt = mqtt
        self._clients = clients

        self.registry = DeviceRegistry()
        self.matcher = TopicMatcher(namespace)
        self.bus = BusCommands(
            mqtt=mqtt,
            topics=self.matcher,
            registry=self.registry,
            keep_shared_zones=config.keep_shared_zone_subscriptions,
            qos=qos,
        )
        self.router = BusRouter(registry=self.registry, matcher=self.matcher, clock=clock)
        self.broadcaster = StateBroadcaster(registry=self.registry, clients=clients)
        self.commands = CommandHandler(
            registry=self.registry,
            bus=self.bus,
            clients=clients,
            broadcaster=self.broadcaster,
        )
        self.liveness = LivenessMonitor(
            registry=self.registry,
            bus=self.bus,
            clock=clock,
            stale_threshold=config.stale_threshold,
            sweep_interval=config.sweep_interval,
        )
        self.errors = ErrorReporter(clients=clients)

    async def start(self) -> None:
        """Attach the broadcaster, subscribe and bind client intents."""
        self.broadcaster.attach()
        for topic in self.router.subscriptions:
            await self._mqtt.subscribe(topic)
        if isinstance(self._mqtt, MqttMessageHandler):
            self._mqtt.on_message(self.router.route)
        self._clients.on_intent(INTENT_REGISTER, self._on_register)
        self._clients.on_intent(INTENT_REQUEST_STATE, self._on_request_state)
        self._clients.on_intent(INTENT_PUSH_OUTPUT, self._on_push_output)
        self._clients.on_intent(INTENT_DELETE, self._on_delete)
        self._clients.on_intent(INTENT_MESSAGE, self._on_message)
        logger.info("Sync engine started on namespace %s", self.matcher.namespace)

    # -- Intent handlers -----------------------------------------------------

    async def _on_register(self, session: ClientSession, *args: Any) -> None:
        async def action() -> None:
            intent = parse_payload(RegistrationIntent, args[0] if args else None)
            await self.commands.register(intent)

        await self._guarded(session, INTENT_REGISTER, action)

    async def _on_request_state(self, session: ClientSession, *_args: Any) -> None:
        async def action() -> None:
            self.commands.request_state(session)

        await self._guarded(session, INTENT_REQUEST_STATE, action)

    async def _on_push_output(self, session: ClientSession, *args: Any) -> None:
        async def action() -> None:
            if len(args) == 1 and isinstance(args[0], dict):
                data: Any = args[0]
            elif len(args) >= 2:  # noqa: PLR2004
                data = {"id": args[0], "value": args[1]}
            else:
                data = None
            await self.commands.push_output_state(parse_payload(OutputCommand, data))

        await self._guarded(session, INTENT_PUSH_OUTPUT, action)

    async def _on_delete(self, session: ClientSession, *args: Any) -> None:
        async def action() -> None:
            device_id = args[0] if args else None
            if isinstance(device_id, dict):
                device_id = device_id.get("id")
            if not isinstance(device_id, str) or not device_id:
                msg = "delete requires a device id"
                raise MalformedPayloadError(msg)
            await self.commands.delete(device_id)

        await self._guarded(session, INTENT_DELETE, action)

    async def _on_message(self, session: ClientSession, *args: Any) -> None:
        async def action() -> None:
            self.commands.relay_message(*args)

        await self._guarded(session, INTENT_MESSAGE, action)

    async def _guarded(
        self,
        session: ClientSession,
        intent: str,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        """Run *action*, reporting any failure to *session* only."""
        try:
            await action()
        except FleetSyncError as exc:
            self.errors.report(session, exc, intent=intent)
        except Exception as exc:
            logger.exception("Intent '%s' crashed", intent)
            self.errors.report(session, exc, intent=intent)
