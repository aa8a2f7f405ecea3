"""Topic layout and classification for the device bus.

Two topic families share a namespace ``ns``::

    ns/device/{mac}             ← announcement / lifecycle (by device id)
    ns/zone/{zone}/temperature  ← measurement
    ns/zone/{zone}/humidity     ← measurement
    ns/zone/{zone}/input        ← actuator echo
    ns/zone/{zone}/output       ← command (published by the bridge)

Devices announce themselves directly by address, but report
measurements by zone, so a zone can carry several logical channels.

:meth:`TopicMatcher.match` turns a topic string into one of three
route values (:class:`Announce`, :class:`Measurement`,
:class:`Unmatched`).  It holds no mutable state and never raises on
malformed input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-])[0-9A-Fa-f]{2}(?:\1[0-9A-Fa-f]{2}){4}$")
_FORBIDDEN = frozenset("/+#")

_DEVICE = "device"
_ZONE = "zone"
_OUTPUT = "output"


class MeasurementKind(StrEnum):
    """Measurement topic kinds; the value is the topic segment."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    ACTUATOR_ECHO = "input"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Announce:
    """A device announcement addressed by MAC-like identifier."""

    mac_address: str


@dataclass(frozen=True, slots=True)
class Measurement:
    """A zone-scoped reading or actuator echo."""

    zone: str
    kind: MeasurementKind


@dataclass(frozen=True, slots=True)
class Unmatched:
    """A topic outside both families."""

    topic: str


type Route = Announce | Measurement | Unmatched


def _valid_segment(segment: str) -> bool:
    return bool(segment) and not (_FORBIDDEN & set(segment))


def is_mac_address(value: str) -> bool:
    """True for six hex pairs delimited consistently by ``:`` or ``-``."""
    return bool(_MAC_RE.match(value))


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class TopicMatcher:
    """Classifies bus topics and builds topics for one namespace.

    Args:
        namespace: Root segment shared by every device topic.

    Raises:
        ValueError: If *namespace* is empty or contains ``/``, ``+``
            or ``#``.
    """

    def __init__(self, namespace: str) -> None:
        if not _valid_segment(namespace):
            msg = f"Invalid topic namespace {namespace!r}"
            raise ValueError(msg)
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def match(self, topic: str) -> Route:
        """Classify *topic* into a route."""
        if not isinstance(topic, str):
            return Unmatched(topic=repr(topic))

        parts = topic.split("/")
        if not parts or parts[0] != self._namespace:
            return Unmatched(topic=topic)

        if len(parts) == 3 and parts[1] == _DEVICE:  # noqa: PLR2004
            if is_mac_address(parts[2]):
                return Announce(mac_address=parts[2])
            return Unmatched(topic=topic)

        if len(parts) == 4 and parts[1] == _ZONE and _valid_segment(parts[2]):  # noqa: PLR2004
            try:
                kind = MeasurementKind(parts[3])
            except ValueError:
                return Unmatched(topic=topic)
            return Measurement(zone=parts[2], kind=kind)

        return Unmatched(topic=topic)

    # -- Topic builders -----------------------------------------------------

    @property
    def announce_filter(self) -> str:
        """Subscription filter covering every device announcement."""
        return f"{self._namespace}/{_DEVICE}/+"

    def announce_topic(self, device_id: str) -> str:
        """Lifecycle topic addressed to a single device."""
        return f"{self._namespace}/{_DEVICE}/{device_id}"

    def measurement_filter(self, zone: str) -> str:
        """Subscription filter for every measurement in *zone*.

        Raises:
            ValueError: If *zone* is not a valid single topic segment.
        """
        return f"{self._zone_root(zone)}/+"

    def measurement_topic(self, zone: str, kind: MeasurementKind) -> str:
        return f"{self._zone_root(zone)}/{kind.value}"

    def command_topic(self, zone: str) -> str:
        """Topic carrying output pushes for *zone*."""
        return f"{self._zone_root(zone)}/{_OUTPUT}"

    def _zone_root(self, zone: str) -> str:
        if not _valid_segment(zone):
            msg = f"Invalid zone {zone!r}"
            raise ValueError(msg)
        return f"{self._namespace}/{_ZONE}/{zone}"
