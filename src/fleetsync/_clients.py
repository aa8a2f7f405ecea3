"""Client push port and in-process session hub.

Provides ClientPort (Protocol) and two implementations:

- ClientHub — holds connected dashboard sessions, each with a bounded
  outbound queue, and dispatches client intents to handlers
- MockClientHub — test double that records pushes

Pushing is non-blocking: events are enqueued with ``put_nowait`` and
dropped for a session whose queue is full.  A slow or vanished
dashboard therefore never stalls the registry mutation that triggered
the push.  The transport (see ``_websocket.py``) drains each queue
onto its connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

IntentHandler = Callable[..., Awaitable[None]]
"""Async handler called as ``handler(session, *args)``."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClientEvent:
    """A named event with positional arguments, as sent to a client."""

    name: str
    args: tuple[Any, ...] = ()

    def to_json(self) -> str:
        """Serialise to the ``{"event": ..., "args": [...]}`` frame."""
        return json.dumps({"event": self.name, "args": list(self.args)}, default=str)


@dataclass(frozen=True, slots=True)
class ClientSession:
    """A connected dashboard.

    Attributes:
        session_id: Unique identifier for this connection.
        queue: Outbound events waiting for the transport.
    """

    session_id: str
    queue: asyncio.Queue[ClientEvent] = field(
        default_factory=asyncio.Queue,
        compare=False,
        hash=False,
        repr=False,
    )


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class ClientPort(Protocol):
    """Port contract for pushing events to dashboards."""

    def broadcast(self, event: str, *args: Any) -> None: ...

    def send_to(self, session: ClientSession, event: str, *args: Any) -> None: ...

    def on_intent(self, intent: str, handler: IntentHandler) -> None: ...


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------


class ClientHub:
    """Tracks connected sessions and routes intents to handlers.

    Args:
        queue_size: Per-session outbound queue bound.
    """

    def __init__(self, *, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._sessions: dict[str, ClientSession] = {}
        self._handlers: dict[str, IntentHandler] = {}
        self._on_connect: list[Callable[[ClientSession], None]] = []

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> list[ClientSession]:
        """Snapshot of connected sessions."""
        return list(self._sessions.values())

    # -- Session lifecycle ---------------------------------------------------

    def connect(self, session_id: str | None = None) -> ClientSession:
        """Create and track a session; connect hooks run immediately."""
        session = ClientSession(
            session_id=session_id or uuid.uuid4().hex,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._sessions[session.session_id] = session
        logger.info("Client %s connected", session.session_id)
        for hook in self._on_connect:
            try:
                hook(session)
            except Exception:
                logger.exception("Connect hook failed for %s", session.session_id)
        return session

    def disconnect(self, session: ClientSession) -> None:
        """Stop tracking *session*.  Unknown sessions are ignored."""
        if self._sessions.pop(session.session_id, None) is not None:
            logger.info("Client %s disconnected", session.session_id)

    def on_connect(self, hook: Callable[[ClientSession], None]) -> None:
        """Run *hook* for every newly connected session."""
        self._on_connect.append(hook)

    # -- ClientPort ----------------------------------------------------------

    def broadcast(self, event: str, *args: Any) -> None:
        """Enqueue *event* for every connected session."""
        message = ClientEvent(name=event, args=args)
        for session in self.sessions:
            self._enqueue(session, message)

    def send_to(self, session: ClientSession, event: str, *args: Any) -> None:
        """Enqueue *event* for *session* only."""
        self._enqueue(session, ClientEvent(name=event, args=args))

    def on_intent(self, intent: str, handler: IntentHandler) -> None:
        """Register the handler for *intent*, replacing any previous one."""
        self._handlers[intent] = handler

    # -- Inbound -------------------------------------------------------------

    async def dispatch(
        self,
        session: ClientSession,
        intent: str,
        args: list[Any] | tuple[Any, ...] = (),
    ) -> None:
        """Invoke the handler registered for *intent*.

        Unknown intents are logged and ignored.
        """
        handler = self._handlers.get(intent)
        if handler is None:
            logger.warning(
                "No handler for intent '%s' (session %s)",
                intent,
                session.session_id,
            )
            return
        await handler(session, *args)

    def _enqueue(self, session: ClientSession, message: ClientEvent) -> None:
        try:
            session.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.debug(
                "Dropping %s for slow client %s",
                message.name,
                session.session_id,
            )


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockClientHub:
    """In-memory test double that records pushes.

    ``broadcasts`` holds ``(event, args)`` tuples; ``sent`` holds
    ``(session, event, args)`` tuples.  ``deliver()`` simulates an
    inbound client intent.
    """

    broadcasts: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    sent: list[tuple[ClientSession, str, tuple[Any, ...]]] = field(
        default_factory=list,
    )
    _handlers: dict[str, IntentHandler] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )

    def broadcast(self, event: str, *args: Any) -> None:
        """Record a broadcast."""
        self.broadcasts.append((event, args))

    def send_to(self, session: ClientSession, event: str, *args: Any) -> None:
        """Record a directed send."""
        self.sent.append((session, event, args))

    def on_intent(self, intent: str, handler: IntentHandler) -> None:
        """Register an intent handler."""
        self._handlers[intent] = handler

    # -- Test helpers -------------------------------------------------------

    async def deliver(self, session: ClientSession, intent: str, *args: Any) -> None:
        """Simulate an inbound intent by invoking its handler."""
        await self._handlers[intent](session, *args)

    @property
    def intents(self) -> set[str]:
        """Names of registered intents."""
        return set(self._handlers)

    def broadcasts_of(self, event: str) -> list[tuple[Any, ...]]:
        """Argument tuples of every broadcast named *event*."""
        return [args for name, args in self.broadcasts if name == event]

    def sent_to(self, session: ClientSession) -> list[tuple[str, tuple[Any, ...]]]:
        """``(event, args)`` tuples sent to *session*."""
        return [(name, args) for s, name, args in self.sent if s == session]

    def reset(self) -> None:
        """Clear recorded pushes (handlers are kept)."""
        self.broadcasts.clear()
        self.sent.clear()
