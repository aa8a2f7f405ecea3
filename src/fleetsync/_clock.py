"""Clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock.  Device ``lastSeenAt``
stamps are taken from this clock and shipped to dashboards, so the
system adapter reports wall-clock seconds since the Unix epoch rather
than a monotonic reading.  Liveness decisions only ever compare two
readings from the same clock.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Time source for activity stamps and staleness checks.

    Tests inject a deterministic fake clock so liveness sweeps can be
    driven without sleeping.
    """

    def now(self) -> float:
        """Return the current time in seconds.

        Returns:
            A float representing seconds since the Unix epoch.
        """
        ...


class SystemClock:
    """Production clock wrapping ``time.time()``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    """

    def now(self) -> float:
        """Return wall-clock time in seconds."""
        return time.time()
