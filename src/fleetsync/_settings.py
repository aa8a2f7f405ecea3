"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  Nested models use ``__`` as the delimiter in env var names,
e.g. ``MQTT__HOST=broker.local`` or ``REGISTRY__STALE_THRESHOLD=90``.

The schema covers four concerns:

* **MQTT** — broker connection and the topic namespace.
* **Logging** — level, format, optional file sink, rotation.
* **Registry** — liveness threshold and sweep cadence.
* **Push** — the websocket endpoint dashboards connect to.

All durations are in **seconds**.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Self

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        MQTT__HOST=broker.local
        MQTT__PORT=1883
        MQTT__USERNAME=user
        MQTT__PASSWORD=secret
        MQTT__TOPIC_PREFIX=greenhouse
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'{name}-{hex8}' at startup."
        ),
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS level used for subscriptions.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "(exponential backoff with jitter) up to "
            "``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    topic_prefix: str = Field(
        default="",
        description=(
            "Namespace all device topics live under. "
            "When empty, falls back to the bridge name."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for log aggregators.
    - ``"text"`` — human-readable timestamped lines for a terminal.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format, 'json' or 'text'.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class RegistrySettings(BaseModel):
    """Device registry liveness configuration.

    A device whose last bus activity is older than ``stale_threshold``
    is evicted by the next sweep.  Sweeps run every ``sweep_interval``
    seconds.

    Environment variables::

        REGISTRY__STALE_THRESHOLD=60
        REGISTRY__SWEEP_INTERVAL=5
    """

    stale_threshold: Annotated[float, Field(gt=0)] = Field(
        default=60.0,
        description="Seconds of bus silence after which a device is evicted.",
    )
    sweep_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds between liveness sweeps.",
    )
    keep_shared_zone_subscriptions: bool = Field(
        default=False,
        description=(
            "When True, a zone's measurement subscription survives a "
            "delete or eviction as long as another active device "
            "still reports from that zone."
        ),
    )

    @model_validator(mode="after")
    def _warn_on_slow_sweep(self) -> Self:
        if self.sweep_interval > self.stale_threshold:
            logger.warning(
                "sweep_interval (%.1fs) exceeds stale_threshold (%.1fs); "
                "stale devices may linger for up to one extra interval",
                self.sweep_interval,
                self.stale_threshold,
            )
        return self


class PushSettings(BaseModel):
    """Websocket push endpoint for dashboard clients.

    Environment variables::

        PUSH__HOST=0.0.0.0
        PUSH__PORT=5000
    """

    enabled: bool = Field(
        default=True,
        description="Serve the websocket endpoint.",
    )
    host: str = Field(
        default="0.0.0.0",  # noqa: S104
        description="Interface the websocket server binds to.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=5000,
        description="Websocket server port.",
    )
    queue_size: Annotated[int, Field(ge=1)] = Field(
        default=64,
        description=(
            "Per-session outbound queue length.  Events for a session "
            "whose queue is full are dropped."
        ),
    )
    ping_interval: Annotated[float, Field(gt=0)] = Field(
        default=20.0,
        description="Seconds between websocket keepalive pings.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for a fleetsync bridge.

    Loaded from environment variables with the nested delimiter
    ``__`` and an optional ``.env`` file in the working directory.

    Example ``.env``::

        MQTT__HOST=broker.local
        MQTT__TOPIC_PREFIX=greenhouse
        REGISTRY__STALE_THRESHOLD=90
        PUSH__PORT=8080
        LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
    """``extra="ignore"`` because no ``env_prefix`` is set: every
    environment variable is visible and unrelated ones (``PATH``,
    ``HOME``) must not fail validation.
    """

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    registry: RegistrySettings = Field(
        default_factory=RegistrySettings,
        description="Device liveness configuration.",
    )
    push: PushSettings = Field(
        default_factory=PushSettings,
        description="Dashboard push endpoint.",
    )
