"""Bridge heartbeat and availability.

Topic layout::

    {ns}/bridge/status   ← retained JSON heartbeat, "offline" on exit/LWT

Heartbeat payload schema::

    {
        "status": "online",
        "uptime_s": 3600.0,
        "version": "0.1.0",
        "devices": {"active": 3, "pending": 1}
    }

The broker publishes ``"offline"`` on the same topic if the bridge
disconnects unexpectedly (see :func:`build_will_config`).  Publication
is fire-and-forget: failures are logged, never propagated.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field

from fleetsync._clock import ClockPort
from fleetsync._mqtt import MqttPort, WillConfig
from fleetsync._registry import DeviceRegistry

logger = logging.getLogger(__name__)


def status_topic(namespace: str) -> str:
    return f"{namespace}/bridge/status"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FleetCounts:
    """Number of active and pending devices at heartbeat time."""

    active: int = 0
    pending: int = 0


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    """Immutable heartbeat snapshot ready for publication."""

    status: str
    uptime_s: float
    version: str
    devices: FleetCounts = field(default_factory=FleetCounts)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_will_config(namespace: str) -> WillConfig:
    """LWT publishing retained ``"offline"`` to the bridge status topic."""
    return WillConfig(
        topic=status_topic(namespace),
        payload="offline",
        qos=1,
        retain=True,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class HealthReporter:
    """Publishes bridge heartbeats to MQTT.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    namespace:
        Topic namespace of the bridge.
    version:
        Bridge version string included in heartbeats.
    clock:
        Clock for uptime measurement.
    registry:
        Registry whose partition sizes are reported.
    """

    mqtt: MqttPort
    namespace: str
    version: str
    clock: ClockPort
    registry: DeviceRegistry
    _start_time: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    def build_heartbeat(self) -> HeartbeatPayload:
        partition = self.registry.partition()
        return HeartbeatPayload(
            status="online",
            uptime_s=self.clock.now() - self._start_time,
            version=self.version,
            devices=FleetCounts(
                active=len(partition.active),
                pending=len(partition.pending),
            ),
        )

    async def publish_heartbeat(self) -> None:
        """Publish a structured JSON heartbeat."""
        topic = status_topic(self.namespace)
        logger.debug("Publishing heartbeat to %s", topic)
        await self._safe_publish(topic, self.build_heartbeat().to_json())

    async def run(self, interval: float) -> None:
        """Publish heartbeats every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.publish_heartbeat()

    async def shutdown(self) -> None:
        """Publish ``"offline"`` to the status topic."""
        logger.info("Health reporter shutting down, publishing offline")
        await self._safe_publish(status_topic(self.namespace), "offline")

    async def _safe_publish(self, topic: str, payload: str) -> None:
        """Publish retained to MQTT, swallowing any exceptions."""
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", topic)
