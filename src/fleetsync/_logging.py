"""Structured JSON log formatter and logging configuration.

Provides a :class:`JsonFormatter` that emits one JSON object per log
record on a single line (JSON Lines / NDJSON format), and
:func:`configure_logging` which installs it on the root logger.

Each line carries the bridge ``service`` name and ``version``.  Records
logged with ``extra={"device_id": ...}`` additionally carry the device
identifier, so a single device's lifecycle (announce, measurements,
eviction) can be followed in a log aggregator with one filter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from fleetsync._settings import LoggingSettings

_ONE_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects (NDJSON).

    Each record produces a JSON object with these fields:

    - ``timestamp`` — ISO 8601, always UTC
    - ``level`` — Python log level name
    - ``logger`` — dotted logger name
    - ``message`` — the formatted log message
    - ``service`` — bridge name
    - ``version`` — bridge version (omitted when empty)
    - ``device_id`` — only when the record was logged with one
    - ``exception`` — formatted traceback (only when an exception is logged)
    - ``stack_info`` — stack trace (only when ``stack_info=True``)

    Args:
        service: Bridge name included in every log line.
        version: Bridge version string.  Omitted from output when empty.
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }

        if self._version:
            entry["version"] = self._version

        device_id = getattr(record, "device_id", None)
        if device_id is not None:
            entry["device_id"] = device_id

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from settings.

    Clears any existing handlers on the root logger, then installs a
    ``stderr`` stream handler and, when ``settings.file`` is set, a
    :class:`~logging.handlers.RotatingFileHandler` bounded by
    ``settings.max_file_size_mb`` with ``settings.backup_count``
    generations.

    Args:
        settings: Logging configuration (level, format, file).
        service: Bridge name passed to :class:`JsonFormatter`.
        version: Bridge version passed to :class:`JsonFormatter`.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _ONE_MB,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(settings.level)
