"""Fire-and-forget bus side effects issued by the core.

Client commands and liveness sweeps pair every registry mutation with
a bus action (announce, unregister, output push, zone
(un)subscription).  Those actions go through :class:`BusCommands`,
which never raises: a transport failure is logged at ERROR and the
registry state stands as committed.  Convergence after a lost message
relies on the device re-announcing itself, not on a retry here.

Payloads::

    ns/device/{id}           {"local": "<zone>"}     ← announce
    ns/device/{id}           {"unregister": true}    ← unregister
    ns/zone/{zone}/output    {"out": <value>}        ← output push
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from fleetsync._mqtt import MqttPort
from fleetsync._registry import DeviceRegistry
from fleetsync._topics import TopicMatcher

logger = logging.getLogger(__name__)


@dataclass
class BusCommands:
    """Publishes device directives and manages zone subscriptions.

    Args:
        mqtt: MQTT port used for every bus action.
        topics: Topic builder for the bridge namespace.
        registry: Consulted when deciding whether a zone is still in use.
        keep_shared_zones: When True, :meth:`release_zone` keeps the
            subscription while another active device reports from the
            same zone.
        qos: QoS for published directives.
    """

    mqtt: MqttPort
    topics: TopicMatcher
    registry: DeviceRegistry
    keep_shared_zones: bool = False
    qos: int = 1

    async def announce(self, device_id: str, zone: str) -> None:
        """Tell a device which zone it has been registered in."""
        await self._safe_publish(
            self.topics.announce_topic(device_id),
            {"local": zone},
        )

    async def unregister(self, device_id: str) -> None:
        """Tell a device it is no longer synchronised."""
        await self._safe_publish(
            self.topics.announce_topic(device_id),
            {"unregister": True},
        )

    async def push_output(self, zone: str, value: float) -> None:
        if not zone:
            logger.debug("Output push skipped, device has no zone")
            return
        await self._safe_publish(self.topics.command_topic(zone), {"out": value})

    async def listen_zone(self, zone: str) -> None:
        """Subscribe to every measurement topic of *zone*."""
        if not zone:
            return
        topic = self.topics.measurement_filter(zone)
        try:
            await self.mqtt.subscribe(topic)
        except Exception:
            logger.exception("Failed to subscribe to %s", topic)

    async def release_zone(self, zone: str, *, device_id: str) -> None:
        """Stop listening to *zone* on behalf of *device_id*."""
        if not zone:
            return
        if self.keep_shared_zones and self._zone_shared(zone, device_id):
            logger.debug("Keeping %s subscription, zone still in use", zone)
            return
        topic = self.topics.measurement_filter(zone)
        try:
            await self.mqtt.unsubscribe(topic)
        except Exception:
            logger.exception("Failed to unsubscribe from %s", topic)

    def _zone_shared(self, zone: str, device_id: str) -> bool:
        return any(
            r.id != device_id and not r.is_pending for r in self.registry.in_zone(zone)
        )

    async def _safe_publish(self, topic: str, payload: dict[str, object]) -> None:
        """Publish JSON to MQTT, swallowing any exceptions."""
        try:
            await self.mqtt.publish(topic, json.dumps(payload), retain=False, qos=self.qos)
        except Exception:
            logger.exception("Failed to publish to %s", topic)
