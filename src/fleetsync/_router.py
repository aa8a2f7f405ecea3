"""Inbound bus message routing.

Classifies each ``(topic, payload)`` pair with :class:`TopicMatcher`
and applies the matching registry mutation:

    Announce     → fresh pending record for the payload's ``id``
    Measurement  → update every record in the zone
    Unmatched    → ignored

Malformed payloads (not JSON, not an object, missing or mistyped
fields) are dropped at DEBUG level.  Nothing raised while handling one
message escapes :meth:`BusRouter.route`, so one bad message cannot stop
the MQTT dispatch loop.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from types import MappingProxyType

from fleetsync._clock import ClockPort
from fleetsync._errors import MalformedPayloadError
from fleetsync._payloads import (
    ActuatorEchoPayload,
    AnnouncementPayload,
    MeasurementPayload,
    decode_object,
    parse_payload,
)
from fleetsync._registry import DeviceRecord, DeviceRegistry
from fleetsync._topics import Announce, Measurement, MeasurementKind, TopicMatcher

logger = logging.getLogger(__name__)


class BusRouter:
    """Routes bus messages to registry mutations.

    Args:
        registry: Registry receiving the mutations.
        matcher: Topic classifier for the bridge namespace.
        clock: Source of ``last_seen_at`` stamps.
    """

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        matcher: TopicMatcher,
        clock: ClockPort,
    ) -> None:
        self._registry = registry
        self._matcher = matcher
        self._clock = clock

    @property
    def subscriptions(self) -> list[str]:
        """Filters that must be subscribed before any device registers."""
        return [self._matcher.announce_filter]

    async def route(self, topic: str, payload: str) -> None:
        """Handle one inbound bus message."""
        route = self._matcher.match(topic)
        try:
            if isinstance(route, Announce):
                self.apply_announcement(route, payload)
            elif isinstance(route, Measurement):
                self.apply_measurement(route, payload)
        except MalformedPayloadError as exc:
            logger.debug("Dropping malformed message on %s: %s", topic, exc)
        except Exception:
            logger.exception("Error routing message on %s", topic)

    def apply_announcement(self, route: Announce, payload: str) -> DeviceRecord:
        """Replace the record named by the payload with a fresh pending one.

        Prior fields are not merged: the announcement wins.

        Raises:
            MalformedPayloadError: If *payload* lacks a usable ``id``.
        """
        announcement = parse_payload(AnnouncementPayload, decode_object(payload))
        record = DeviceRecord(
            id=announcement.id,
            local=announcement.zone,
            input=announcement.input_channel,
            output=announcement.output_channel,
            is_pending=True,
            last_seen_at=self._clock.now(),
            attributes=MappingProxyType(announcement.passthrough),
        )
        self._registry.set(record.id, record)
        logger.info(
            "Device %s announced on %s",
            record.id,
            route.mac_address,
            extra={"device_id": record.id},
        )
        return record

    def apply_measurement(self, route: Measurement, payload: str) -> list[str]:
        """Apply a zone measurement to every record in the zone.

        Returns the ids of the records that changed.

        Raises:
            MalformedPayloadError: If *payload* does not fit *route.kind*.
        """
        data = decode_object(payload)
        if route.kind is MeasurementKind.ACTUATOR_ECHO:
            echo = parse_payload(ActuatorEchoPayload, data)
            if echo.input_value is None:
                return []
            value = echo.input_value

            def change(record: DeviceRecord) -> DeviceRecord:
                return replace(record, input=replace(record.input, value=value))

        else:
            reading = parse_payload(MeasurementPayload, data).value
            now = self._clock.now()
            field_name = route.kind.value

            def change(record: DeviceRecord) -> DeviceRecord:
                return replace(record, **{field_name: reading, "last_seen_at": now})

        updated: list[str] = []
        for record in self._registry.in_zone(route.zone):
            if self._registry.update(record.id, change) is not None:
                updated.append(record.id)
        if not updated:
            logger.debug("No device in zone %s for %s", route.zone, route.kind.value)
        return updated
