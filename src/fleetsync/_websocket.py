"""Websocket transport for dashboard sessions.

Each accepted connection becomes one :class:`ClientSession` on the
hub.  A writer task drains the session's queue onto the socket while
the reader loop turns inbound frames into intents.

Frame format, both directions::

    {"event": "pushOutputState", "args": ["AA:BB:CC:DD:EE:FF", 1]}

Malformed inbound frames are dropped at DEBUG level.  ``websockets`` is
imported lazily in :meth:`WebSocketServer.start` so the rest of the
package works without it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from fleetsync._clients import ClientHub, ClientSession
from fleetsync._settings import PushSettings

logger = logging.getLogger(__name__)


def parse_frame(message: str | bytes) -> tuple[str, list[Any]] | None:
    """Decode an inbound frame into ``(intent, args)``; ``None`` if malformed."""
    if isinstance(message, (bytes, bytearray)):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(message)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    event = data.get("event")
    args = data.get("args", [])
    if not isinstance(event, str) or not event:
        return None
    if not isinstance(args, list):
        args = [args]
    return event, args


class WebSocketServer:
    """Serves the client hub over websockets.

    Args:
        hub: Session hub receiving connections and intents.
        settings: Bind address, port and keepalive configuration.
    """

    def __init__(self, *, hub: ClientHub, settings: PushSettings) -> None:
        self._hub = hub
        self._settings = settings
        self._server: Any = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        """Bind and start accepting connections."""
        try:
            from websockets.asyncio.server import serve  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "websockets is required to use WebSocketServer"
            raise RuntimeError(msg) from exc

        self._server = await serve(
            self._handle,
            self._settings.host,
            self._settings.port,
            ping_interval=self._settings.ping_interval,
        )
        logger.info(
            "Websocket server listening on %s:%d",
            self._settings.host,
            self._settings.port,
        )

    async def stop(self) -> None:
        """Close the listener and all connections.  Idempotent."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    # -- Connection handling -------------------------------------------------

    async def _handle(self, connection: Any) -> None:
        from websockets.exceptions import ConnectionClosed  # noqa: PLC0415

        session = self._hub.connect()
        writer = asyncio.create_task(self._drain(session, connection))
        try:
            with contextlib.suppress(ConnectionClosed):
                async for message in connection:
                    await self._receive(session, message)
        finally:
            self._hub.disconnect(session)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    async def _drain(self, session: ClientSession, connection: Any) -> None:
        from websockets.exceptions import ConnectionClosed  # noqa: PLC0415

        while True:
            event = await session.queue.get()
            try:
                await connection.send(event.to_json())
            except ConnectionClosed:
                return

    async def _receive(self, session: ClientSession, message: str | bytes) -> None:
        frame = parse_frame(message)
        if frame is None:
            logger.debug("Dropping malformed frame from %s", session.session_id)
            return
        intent, args = frame
        try:
            await self._hub.dispatch(session, intent, args)
        except Exception:
            logger.exception("Intent '%s' from %s failed", intent, session.session_id)
