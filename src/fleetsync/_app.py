"""Bridge orchestrator: the composition root of a fleetsync process.

:class:`Bridge` builds the sync engine from settings, connects it to
the MQTT broker and the dashboard push endpoint, and runs it until
SIGTERM/SIGINT.

Typical usage::

    import fleetsync

    bridge = fleetsync.Bridge(name="greenhouse", version="1.2.0")
    bridge.cli()

Every collaborator can be injected through :meth:`Bridge.run`, so
tests run the whole lifecycle with ``MockMqttClient``,
``MockClientHub`` and ``FakeClock`` and a manual shutdown event.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid

from fleetsync._clients import ClientHub, ClientPort
from fleetsync._clock import ClockPort, SystemClock
from fleetsync._engine import SyncEngine
from fleetsync._health import HealthReporter, build_will_config
from fleetsync._logging import configure_logging
from fleetsync._mqtt import MqttClient, MqttLifecycle, MqttPort, NullMqttClient
from fleetsync._settings import Settings
from fleetsync._websocket import WebSocketServer

logger = logging.getLogger(__name__)


class Bridge:
    """Central composition root and lifecycle owner.

    Args:
        name: Bridge name; the topic namespace when
            ``mqtt.topic_prefix`` is empty, and the client id stem.
        version: Version string reported in heartbeats and ``--version``.
        description: Short description for CLI help text.
        settings_class: Settings subclass instantiated at startup.
        dry_run: Use a :class:`NullMqttClient` instead of the broker.
        heartbeat_interval: Seconds between retained heartbeats, or
            ``None`` to publish only the startup heartbeat.

    Raises:
        ValueError: If *heartbeat_interval* is not positive.
    """

    def __init__(
        self,
        name: str,
        version: str = "0.0.0",
        *,
        description: str = "MQTT device registry bridge",
        settings_class: type[Settings] = Settings,
        dry_run: bool = False,
        heartbeat_interval: float | None = 60.0,
    ) -> None:
        if heartbeat_interval is not None and heartbeat_interval <= 0:
            msg = f"heartbeat_interval must be positive, got {heartbeat_interval}"
            raise ValueError(msg)
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class
        self._dry_run = dry_run
        self._heartbeat_interval = heartbeat_interval
        self.engine: SyncEngine | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        hub: ClientPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Run the bridge until shutdown (blocking).

        Args:
            mqtt: Override the bus client.
            hub: Override the client port.  When given, no websocket
                server is started.
            settings: Override settings (skip env loading).
            shutdown_event: Override the shutdown event (skip OS signal
                handlers).
            clock: Override the clock.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    mqtt=mqtt,
                    hub=hub,
                    settings=settings,
                    shutdown_event=shutdown_event,
                    clock=clock,
                ),
            )

    def cli(self) -> None:
        """Run the bridge behind the Typer command line."""
        from fleetsync._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        hub: ClientPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        # --- Phase 1: Bootstrap infrastructure ---
        resolved_settings = settings if settings is not None else self._settings_class()
        namespace = resolved_settings.mqtt.topic_prefix or self._name
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()

        mqtt = self._create_mqtt(mqtt, resolved_settings, namespace)
        server: WebSocketServer | None = None
        if hub is None:
            client_hub = ClientHub(queue_size=resolved_settings.push.queue_size)
            if resolved_settings.push.enabled:
                server = WebSocketServer(hub=client_hub, settings=resolved_settings.push)
            hub = client_hub

        engine = SyncEngine(
            mqtt=mqtt,
            clients=hub,
            clock=resolved_clock,
            namespace=namespace,
            registry_settings=resolved_settings.registry,
            qos=resolved_settings.mqtt.qos,
        )
        self.engine = engine
        if isinstance(hub, ClientHub):
            hub.on_connect(engine.broadcaster.send_snapshot)

        health_reporter = HealthReporter(
            mqtt=mqtt,
            namespace=namespace,
            version=self._version,
            clock=resolved_clock,
            registry=engine.registry,
        )

        # --- Phase 2: Connect ---
        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
        await engine.start()
        if server is not None:
            await server.start()

        shutdown_event = self._install_signal_handlers(shutdown_event)

        # --- Phase 3: Run ---
        # The startup heartbeat overwrites a retained LWT "offline".
        await health_reporter.publish_heartbeat()
        tasks = [asyncio.create_task(engine.liveness.run())]
        if self._heartbeat_interval is not None:
            tasks.append(
                asyncio.create_task(health_reporter.run(self._heartbeat_interval)),
            )

        try:
            await shutdown_event.wait()
        finally:
            # --- Phase 4: Tear down ---
            await self._cancel_tasks(tasks)
            if server is not None:
                await server.stop()
            await health_reporter.shutdown()
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()

        logger.info("Shutdown complete")

    # --- _run_async helpers ------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        resolved_settings: Settings,
        namespace: str,
    ) -> MqttPort:
        """Create the bus client, or return the injected one.

        When no explicit ``client_id`` is configured, one is generated
        from the bridge name and a short random suffix
        (e.g. ``"greenhouse-a1b2c3d4"``).
        """
        if mqtt is not None:
            return mqtt
        if self._dry_run:
            logger.info("Dry-run mode: bus traffic is discarded")
            return NullMqttClient()
        mqtt_settings = resolved_settings.mqtt
        if not mqtt_settings.client_id:
            generated_id = f"{self._name}-{uuid.uuid4().hex[:8]}"
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": generated_id},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(namespace))

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    async def _cancel_tasks(tasks: list[asyncio.Task[None]]) -> None:
        """Cancel background tasks and wait for them to finish."""
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(
                result,
                asyncio.CancelledError,
            ):
                logger.error("Task error during shutdown: %s", result)
