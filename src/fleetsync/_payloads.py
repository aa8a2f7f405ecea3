"""Wire payload models for the bus and client boundaries.

Every inbound payload is validated through one of these pydantic
models before it can touch the registry.  Validation failures surface
as :class:`~fleetsync._errors.MalformedPayloadError` via
:func:`parse_payload`; nothing downstream ever sees a half-valid dict.

Bus payloads::

    announcement   {"id": "AA:BB:CC:DD:EE:FF", "local": "kitchen", ...}
    measurement    {"value": 21.5}
    actuator echo  {"in": 1}

Client intents::

    register         {"id": ..., "local": ..., "input": ..., "output": ...}
    pushOutputState  (id, value)
    delete           (id)
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from pydantic import (
    AllowInfNan,
    BaseModel,
    ConfigDict,
    Field,
    Strict,
    TypeAdapter,
    ValidationError,
)

from fleetsync._errors import MalformedPayloadError
from fleetsync._registry import Channel

_Segment = Annotated[str, Field(min_length=1, pattern=r"^[^/+#]+$")]
_OptionalSegment = Annotated[str, Field(pattern=r"^[^/+#]*$")]
_Number = Annotated[float, Strict(), AllowInfNan(False)]

_ZONE = TypeAdapter(_OptionalSegment)
_CHANNEL_KEYS = ("input", "output")


class ChannelPayload(BaseModel):
    """Channel announced in record shape, ``{"name": ..., "value": ...}``."""

    name: str = ""
    value: _Number = 0


def _as_zone(value: Any) -> str | None:
    try:
        return _ZONE.validate_python(value)
    except ValidationError:
        return None


def _as_channel(value: Any) -> Channel | None:
    if isinstance(value, str):
        return Channel(name=value)
    if not isinstance(value, dict):
        return None
    try:
        channel = ChannelPayload.model_validate(value)
    except ValidationError:
        return None
    return Channel(name=channel.name, value=channel.value)


def _consumed(key: str, value: Any) -> bool:
    if key == "local":
        return _as_zone(value) is not None
    if key in _CHANNEL_KEYS:
        return _as_channel(value) is not None
    return False


class AnnouncementPayload(BaseModel):
    """Device self-announcement.

    Only ``id`` is validated.  ``local`` becomes the zone when it is a
    usable topic segment; ``input`` and ``output`` become channels when
    they hold a name or a ``{"name", "value"}`` object.  Every other key
    passes through untouched, as do unusable values of those three.
    """

    model_config = ConfigDict(extra="allow")

    id: _Segment

    @property
    def zone(self) -> str:
        return _as_zone(self._extras.get("local", "")) or ""

    @property
    def input_channel(self) -> Channel:
        return _as_channel(self._extras.get("input")) or Channel()

    @property
    def output_channel(self) -> Channel:
        return _as_channel(self._extras.get("output")) or Channel()

    @property
    def passthrough(self) -> dict[str, Any]:
        """Keys not consumed as zone or channel, in arrival order."""
        return {k: v for k, v in self._extras.items() if not _consumed(k, v)}

    @property
    def _extras(self) -> dict[str, Any]:
        return self.model_extra or {}


class MeasurementPayload(BaseModel):
    """Temperature or humidity reading."""

    value: _Number


class ActuatorEchoPayload(BaseModel):
    """Actuator state echoed by a device; ``in`` may be absent."""

    model_config = ConfigDict(populate_by_name=True)

    input_value: _Number | None = Field(default=None, alias="in")


class RegistrationIntent(BaseModel):
    """Client request to synchronise a device."""

    id: _Segment
    local: _Segment
    input: str
    output: str


class OutputCommand(BaseModel):
    """Client request to drive a device's output channel."""

    id: _Segment
    value: _Number


def decode_object(raw: str | bytes) -> dict[str, Any]:
    """Decode *raw* as a JSON object.

    Raises:
        MalformedPayloadError: If *raw* is not JSON or not an object.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        msg = "payload is not valid JSON"
        raise MalformedPayloadError(msg) from exc
    if not isinstance(data, dict):
        msg = f"expected a JSON object, got {type(data).__name__}"
        raise MalformedPayloadError(msg)
    return data


def parse_payload[M: BaseModel](model: type[M], data: Any) -> M:
    """Validate *data* against *model*.

    Raises:
        MalformedPayloadError: If validation fails.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        msg = f"invalid {model.__name__}: {exc.error_count()} error(s)"
        errors = exc.errors(include_url=False, include_context=False)
        raise MalformedPayloadError(msg, details={"errors": errors}) from exc
