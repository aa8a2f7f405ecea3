"""Client-originated device commands.

Each command commits its registry mutation first and only then issues
the paired bus action.  The bus action is fire-and-forget, so the
registry stays consistent whether or not the broker accepted it.

Commands:

- ``register``          — create/replace an active record, announce it,
                          listen to its zone
- ``request_state``     — send the current partition to one session
- ``push_output_state`` — set ``output.value`` and publish it
- ``delete``            — soft delete: mark pending, stop listening,
                          tell the device to unregister; the next
                          liveness sweep (or a fresh announcement)
                          finishes the job
- ``relay_message``     — echo a free-form dashboard message to every
                          session; touches neither registry nor bus
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from fleetsync._broadcast import StateBroadcaster
from fleetsync._bus import BusCommands
from fleetsync._clients import ClientPort, ClientSession
from fleetsync._errors import DeviceNotFoundError
from fleetsync._payloads import OutputCommand, RegistrationIntent
from fleetsync._registry import Channel, DeviceRecord, DeviceRegistry

logger = logging.getLogger(__name__)

REGISTERED_EVENT = "registered"
MESSAGE_EVENT = "message"


class CommandHandler:
    """Applies client intents to the registry and the bus.

    Args:
        registry: Registry receiving the mutations.
        bus: Fire-and-forget bus façade.
        clients: Client port for the ``registered`` notification.
        broadcaster: Used to answer state requests.
    """

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        bus: BusCommands,
        clients: ClientPort,
        broadcaster: StateBroadcaster,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._clients = clients
        self._broadcaster = broadcaster

    async def register(self, intent: RegistrationIntent) -> DeviceRecord:
        """Store a fresh active record for *intent* and announce it."""
        record = DeviceRecord(
            id=intent.id,
            local=intent.local,
            input=Channel(name=intent.input),
            output=Channel(name=intent.output),
        )
        self._registry.set(record.id, record)
        self._clients.broadcast(REGISTERED_EVENT, record.to_dict())
        logger.info(
            "Registered device %s in zone %s",
            record.id,
            record.local,
            extra={"device_id": record.id},
        )
        await self._bus.announce(record.id, record.local)
        await self._bus.listen_zone(record.local)
        return record

    def request_state(self, session: ClientSession) -> None:
        self._broadcaster.send_snapshot(session)

    async def push_output_state(self, command: OutputCommand) -> DeviceRecord:
        """Set a device's output value and publish it to its zone.

        Raises:
            DeviceNotFoundError: If the device is unknown.
        """
        value = command.value
        updated = self._registry.update(
            command.id,
            lambda r: replace(r, output=replace(r.output, value=value)),
        )
        if updated is None:
            raise DeviceNotFoundError(command.id)
        await self._bus.push_output(updated.local, value)
        return updated

    async def delete(self, device_id: str) -> DeviceRecord:
        """Soft-delete a device.

        Raises:
            DeviceNotFoundError: If the device is unknown.
        """
        updated = self._registry.mark_pending(device_id)
        if updated is None:
            raise DeviceNotFoundError(device_id)
        logger.info(
            "Device %s marked for removal",
            device_id,
            extra={"device_id": device_id},
        )
        await self._bus.release_zone(updated.local, device_id=device_id)
        await self._bus.unregister(device_id)
        return updated

    def relay_message(self, *args: Any) -> None:
        """Broadcast a free-form client message to every session, sender included."""
        self._clients.broadcast(MESSAGE_EVENT, *args)
