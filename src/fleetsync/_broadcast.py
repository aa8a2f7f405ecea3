"""Fleet state fan-out to connected dashboards.

:class:`StateBroadcaster` is the registry's single change listener.
On each committed mutation it serialises the current partition and
pushes one ``state`` event, ``(active, pending)``, to every client.
Serialisation is the only work done inside the mutation; the push
itself only enqueues.
"""

from __future__ import annotations

import logging

from fleetsync._clients import ClientPort, ClientSession
from fleetsync._registry import DeviceRecord, DeviceRegistry

logger = logging.getLogger(__name__)

STATE_EVENT = "state"


def serialize_partition(
    registry: DeviceRegistry,
) -> tuple[list[dict[str, object]], list[dict[str, object]]]:
    """Return ``(active, pending)`` as lists of wire dicts."""
    partition = registry.partition()
    return _dicts(partition.active), _dicts(partition.pending)


def _dicts(records: list[DeviceRecord]) -> list[dict[str, object]]:
    return [record.to_dict() for record in records]


class StateBroadcaster:
    """Pushes the partitioned fleet state on every registry change."""

    def __init__(self, *, registry: DeviceRegistry, clients: ClientPort) -> None:
        self._registry = registry
        self._clients = clients

    def attach(self) -> None:
        """Install this broadcaster as the registry's change listener."""
        self._registry.set_change_callback(self.on_change)

    def on_change(self, registry: DeviceRegistry) -> None:
        active, pending = serialize_partition(registry)
        logger.debug(
            "Broadcasting state: %d active, %d pending",
            len(active),
            len(pending),
        )
        self._clients.broadcast(STATE_EVENT, active, pending)

    def send_snapshot(self, session: ClientSession) -> None:
        """Push the current state to *session* only."""
        active, pending = serialize_partition(self._registry)
        self._clients.send_to(session, STATE_EVENT, active, pending)
