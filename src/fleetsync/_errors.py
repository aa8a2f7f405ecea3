"""Error taxonomy and client-directed error reporting.

Three failure classes exist in the core:

- **Malformed** — a payload that cannot be decoded or lacks a required
  field.  Dropped silently on the bus side; reported to the issuing
  session on the client side.
- **NotFound** — a client command names an unknown device.  Reported
  to the issuing session only; no mutation, no broadcast.
- **Transport** — a bus publish or subscription failed.  Logged by the
  bus façade and never retried (see ``_bus.py``).

Payload schema sent to the issuing client as event ``"error"``::

    {
        "error_type": "not_found",
        "message": "Unknown device 'AA:BB:CC:DD:EE:FF'",
        "device": "AA:BB:CC:DD:EE:FF" | null,
        "intent": "pushOutputState" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fleetsync._clients import ClientPort, ClientSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class FleetSyncError(Exception):
    """Base exception for all fleetsync errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class MalformedPayloadError(FleetSyncError):
    """Payload not decodable, or missing a required field."""


class DeviceNotFoundError(FleetSyncError, LookupError):
    """A command referenced a device id the registry does not hold."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Unknown device {device_id!r}")


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    DeviceNotFoundError: "not_found",
    MalformedPayloadError: "malformed",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload ready for a client."""

    error_type: str
    message: str
    device: str | None
    intent: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(self.to_dict(), default=str)


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    intent: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not matched.
    When *device* is omitted it is taken from a
    :class:`DeviceNotFoundError`.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.  Defaults to
            :data:`DEFAULT_ERROR_TYPES`; unmapped types yield ``"error"``.
        device: Optional device id to include in the payload.
        intent: Optional client intent name that failed.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = DEFAULT_ERROR_TYPES if error_type_map is None else error_type_map
    error_type = resolved_map.get(type(error), "error")
    if device is None and isinstance(error, DeviceNotFoundError):
        device = error.device_id
    details = dict(error.details) if isinstance(error, FleetSyncError) else {}
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        intent=intent,
        timestamp=now.isoformat(),
        details=details,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorReporter:
    """Reports command failures back to the client that issued them.

    Failures are logged at WARNING and pushed to the issuing session
    only.  Reporting itself never raises.

    Args:
        clients: Client port used to reach the session.
        error_type_map: Mapping from exception types to type strings.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    clients: ClientPort
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    def report(
        self,
        session: ClientSession,
        error: Exception,
        *,
        intent: str | None = None,
    ) -> ErrorPayload | None:
        """Build an error payload and send it to *session*."""
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                intent=intent,
                clock=self.clock,
            )
        except Exception:
            logger.exception("Failed to build error payload for %r", error)
            return None

        logger.warning(
            "Command %s failed: %s (type=%s)",
            intent,
            payload.message,
            payload.error_type,
            extra={"device_id": payload.device},
        )
        try:
            self.clients.send_to(session, "error", payload.to_dict())
        except Exception:
            logger.exception("Failed to report error to session %s", session)
        return payload
