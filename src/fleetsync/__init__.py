"""fleetsync.

Bridges an MQTT device bus to live dashboards: a registry of devices
kept in sync with bus announcements, measurements and client commands.
"""

from importlib.metadata import PackageNotFoundError, version

from fleetsync._app import Bridge
from fleetsync._broadcast import StateBroadcaster
from fleetsync._bus import BusCommands
from fleetsync._clients import (
    ClientEvent,
    ClientHub,
    ClientPort,
    ClientSession,
    IntentHandler,
    MockClientHub,
)
from fleetsync._clock import ClockPort, SystemClock
from fleetsync._commands import CommandHandler
from fleetsync._engine import SyncEngine
from fleetsync._errors import (
    DeviceNotFoundError,
    ErrorPayload,
    ErrorReporter,
    FleetSyncError,
    MalformedPayloadError,
    build_error_payload,
)
from fleetsync._health import HealthReporter, HeartbeatPayload, build_will_config
from fleetsync._liveness import LivenessMonitor
from fleetsync._logging import JsonFormatter, configure_logging
from fleetsync._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
    WillConfig,
)
from fleetsync._registry import Channel, DeviceRecord, DeviceRegistry, Partition
from fleetsync._router import BusRouter
from fleetsync._settings import (
    LoggingSettings,
    MqttSettings,
    PushSettings,
    RegistrySettings,
    Settings,
)
from fleetsync._topics import (
    Announce,
    Measurement,
    MeasurementKind,
    TopicMatcher,
    Unmatched,
    is_mac_address,
)
from fleetsync._websocket import WebSocketServer

try:
    __version__ = version("fleetsync")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Bridge
    "Bridge",
    "SyncEngine",
    # Registry
    "Channel",
    "DeviceRecord",
    "DeviceRegistry",
    "Partition",
    # Topics
    "Announce",
    "Measurement",
    "MeasurementKind",
    "TopicMatcher",
    "Unmatched",
    "is_mac_address",
    # Engine components
    "BusCommands",
    "BusRouter",
    "CommandHandler",
    "LivenessMonitor",
    "StateBroadcaster",
    # Clients
    "ClientEvent",
    "ClientHub",
    "ClientPort",
    "ClientSession",
    "IntentHandler",
    "MockClientHub",
    "WebSocketServer",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "NullMqttClient",
    "WillConfig",
    # Errors
    "DeviceNotFoundError",
    "ErrorPayload",
    "ErrorReporter",
    "FleetSyncError",
    "MalformedPayloadError",
    "build_error_payload",
    # Health
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "LoggingSettings",
    "MqttSettings",
    "PushSettings",
    "RegistrySettings",
    "Settings",
]
