"""Public test-support utilities for fleetsync.

Re-exports test doubles and factories so that consumer test suites
can import everything from a single ``fleetsync.testing`` namespace
instead of reaching into private modules.

Provided symbols:

- :class:`EngineHarness`: sync engine pre-wired with doubles.
- :class:`MockMqttClient`: in-memory MQTT double that records calls.
- :class:`NullMqttClient`: silent no-op MQTT adapter.
- :class:`MockClientHub`: client port double recording pushes.
- :class:`FakeClock`: deterministic clock for liveness tests.
- :func:`make_settings`: factory for ``Settings`` without ``.env`` files.
"""

from fleetsync._clients import MockClientHub
from fleetsync._mqtt import MockMqttClient, NullMqttClient
from fleetsync.testing._clock import FakeClock
from fleetsync.testing._harness import EngineHarness
from fleetsync.testing._settings import make_settings

__all__ = [
    "EngineHarness",
    "FakeClock",
    "MockClientHub",
    "MockMqttClient",
    "NullMqttClient",
    "make_settings",
]
