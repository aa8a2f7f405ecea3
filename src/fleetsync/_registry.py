"""Authoritative in-memory device registry.

The registry is the only owner of device state.  Records are
immutable values; every mutation replaces a whole record, so readers
always see either the previous or the next version of a device, never
a half-written one.

After every committed mutation the registry invokes a single change
listener with itself as argument.  The listener runs synchronously,
after the commit, while the registry lock is still held, so listeners
observe notifications in commit order.

Lifecycle of a record::

    announce ──► pending ──register──► active ──delete──► pending
                    ▲                                        │
                    └───────────── eviction (terminal) ◄─────┘
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)

ChangeCallback = Callable[["DeviceRegistry"], None]
"""Listener invoked after each committed mutation."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Channel:
    """An actuator channel: a name and its current numeric value."""

    name: str = ""
    value: float = 0

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    """State of one device as known to the bridge.

    ``last_seen_at`` is ``None`` until the device is heard on the bus;
    such records are never evicted by the liveness sweep.
    ``attributes`` carries announcement keys outside the known schema.
    """

    id: str
    local: str = ""
    input: Channel = field(default_factory=Channel)
    output: Channel = field(default_factory=Channel)
    temperature: float | None = None
    humidity: float | None = None
    is_pending: bool = False
    last_seen_at: float | None = None
    attributes: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    def to_dict(self) -> dict[str, object]:
        """Serialise to the wire shape pushed to clients."""
        data: dict[str, object] = dict(self.attributes)
        data.update(
            {
                "id": self.id,
                "local": self.local,
                "input": self.input.to_dict(),
                "output": self.output.to_dict(),
                "temperature": self.temperature,
                "humidity": self.humidity,
                "isPending": self.is_pending,
                "lastSeenAt": self.last_seen_at,
            },
        )
        return data


class Partition(NamedTuple):
    """Registry contents split by pending flag."""

    active: list[DeviceRecord]
    pending: list[DeviceRecord]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class DeviceRegistry:
    """Mapping from device id to :class:`DeviceRecord`.

    All mutators take a re-entrant lock, so read-modify-write sequences
    from the bus router and the client command path cannot lose
    updates even if they are ever driven from different threads.

    Args:
        on_change: Optional initial change listener.
    """

    def __init__(self, *, on_change: ChangeCallback | None = None) -> None:
        self._records: dict[str, DeviceRecord] = {}
        self._on_change = on_change
        self._lock = threading.RLock()

    # -- Queries -------------------------------------------------------------

    def get(self, device_id: str) -> DeviceRecord | None:
        with self._lock:
            return self._records.get(device_id)

    def values(self) -> list[DeviceRecord]:
        """Snapshot of all records in insertion order."""
        with self._lock:
            return list(self._records.values())

    def in_zone(self, zone: str) -> list[DeviceRecord]:
        """Snapshot of records whose ``local`` equals *zone*."""
        with self._lock:
            return [r for r in self._records.values() if r.local == zone]

    def partition(self) -> Partition:
        """Split a single snapshot into active and pending records."""
        active: list[DeviceRecord] = []
        pending: list[DeviceRecord] = []
        for record in self.values():
            (pending if record.is_pending else active).append(record)
        return Partition(active=active, pending=pending)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # -- Mutations -----------------------------------------------------------

    def set(self, device_id: str, record: DeviceRecord) -> None:
        """Insert or replace the full record for *device_id*.

        Raises:
            ValueError: If ``record.id`` does not equal *device_id*.
        """
        if record.id != device_id:
            msg = f"Record id {record.id!r} does not match key {device_id!r}"
            raise ValueError(msg)
        with self._lock:
            self._records[device_id] = record
            self._notify()

    def update(
        self,
        device_id: str,
        change: Callable[[DeviceRecord], DeviceRecord],
    ) -> DeviceRecord | None:
        """Atomically replace a record with ``change(current)``.

        Returns the new record, or ``None`` (without notifying) when
        *device_id* is unknown.
        """
        with self._lock:
            current = self._records.get(device_id)
            if current is None:
                return None
            updated = change(current)
            self.set(device_id, updated)
            return updated

    def mark_pending(self, device_id: str) -> DeviceRecord | None:
        """Flag a record as pending; ``None`` when unknown."""
        return self.update(device_id, lambda r: replace(r, is_pending=True))

    def delete(self, device_id: str) -> bool:
        """Remove *device_id*.  Returns ``False`` (no notification) if absent."""
        with self._lock:
            if self._records.pop(device_id, None) is None:
                return False
            self._notify()
            return True

    # -- Listener ------------------------------------------------------------

    def set_change_callback(self, callback: ChangeCallback | None) -> None:
        """Install the single change listener, replacing any previous one."""
        with self._lock:
            self._on_change = callback

    def _notify(self) -> None:
        callback = self._on_change
        if callback is None:
            return
        try:
            callback(self)
        except Exception:
            logger.exception("Registry change listener failed")
