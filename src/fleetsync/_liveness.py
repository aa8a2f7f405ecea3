"""Liveness sweep: evict devices that stopped talking.

Every ``sweep_interval`` seconds the monitor looks for records whose
``last_seen_at`` is older than ``stale_threshold``.  Active stale
devices are torn down on the bus (zone released, unregister directive
published); devices already pending were torn down when they were
deleted and are evicted silently.  Records that were never heard on
the bus (``last_seen_at is None``) are exempt.

A device that announces itself again, or is re-registered by a
client, while its teardown is in flight is kept.  Everything else found
stale at the start of the sweep is evicted.

Sweeps never overlap: a tick that fires while the previous sweep is
still awaiting bus I/O waits for it to finish.
"""

from __future__ import annotations

import asyncio
import logging

from fleetsync._bus import BusCommands
from fleetsync._clock import ClockPort
from fleetsync._registry import DeviceRecord, DeviceRegistry

logger = logging.getLogger(__name__)


def _rescued(stale: DeviceRecord, current: DeviceRecord) -> bool:
    """Whether *current* replaced *stale* while its teardown was awaited.

    Only a fresh announcement (pending, newer stamp) or a client
    re-registration (never heard on the bus) counts.  A measurement
    alone does not: the device was already told to unregister.
    """
    if current.last_seen_at is None:
        return True
    return current.is_pending and current.last_seen_at > (stale.last_seen_at or 0.0)


class LivenessMonitor:
    """Periodic stale-device eviction.

    Args:
        registry: Registry to sweep.
        bus: Bus façade for teardown directives.
        clock: Time source shared with the bus router.
        stale_threshold: Seconds of silence before eviction.
        sweep_interval: Seconds between sweeps.

    Raises:
        ValueError: If either duration is not positive.
    """

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        bus: BusCommands,
        clock: ClockPort,
        stale_threshold: float = 60.0,
        sweep_interval: float = 5.0,
    ) -> None:
        if stale_threshold <= 0 or sweep_interval <= 0:
            msg = (
                "stale_threshold and sweep_interval must be positive, got "
                f"{stale_threshold} and {sweep_interval}"
            )
            raise ValueError(msg)
        self._registry = registry
        self._bus = bus
        self._clock = clock
        self._stale_threshold = stale_threshold
        self._sweep_interval = sweep_interval
        self._lock = asyncio.Lock()

    @property
    def sweep_interval(self) -> float:
        return self._sweep_interval

    def is_stale(self, record: DeviceRecord, now: float) -> bool:
        """True when *record* was heard on the bus and has since gone quiet."""
        if record.last_seen_at is None:
            return False
        return now - record.last_seen_at > self._stale_threshold

    async def sweep(self) -> list[str]:
        """Run one sweep and return the evicted device ids."""
        async with self._lock:
            now = self._clock.now()
            stale = [r for r in self._registry.values() if self.is_stale(r, now)]
            if not stale:
                return []

            for record in stale:
                if record.is_pending:
                    continue
                await self._bus.release_zone(record.local, device_id=record.id)
                await self._bus.unregister(record.id)

            evicted: list[str] = []
            for record in stale:
                current = self._registry.get(record.id)
                if current is None or _rescued(record, current):
                    continue
                if self._registry.delete(record.id):
                    evicted.append(record.id)

            if evicted:
                logger.info(
                    "Evicted %d stale device(s): %s",
                    len(evicted),
                    ", ".join(evicted),
                )
            return evicted

    async def run(self) -> None:
        """Sweep at a fixed interval until cancelled.

        A failing sweep is logged and the loop carries on with the next
        tick.
        """
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Liveness sweep failed")
