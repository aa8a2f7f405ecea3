"""Tests for fleetsync._engine — engine wiring and client intents.

Test Techniques Used:
    - Integration of components: bus traffic and intents through one engine
    - Equivalence Partitioning: accepted argument shapes per intent
    - Error Guessing: malformed and unknown-device intents
    - State Transition Testing: announce → register → delete → re-register
"""

from __future__ import annotations

import pytest

from fleetsync._broadcast import STATE_EVENT
from fleetsync._clients import ClientSession
from fleetsync._commands import REGISTERED_EVENT
from fleetsync._engine import (
    INTENT_DELETE,
    INTENT_MESSAGE,
    INTENT_PUSH_OUTPUT,
    INTENT_REGISTER,
    INTENT_REQUEST_STATE,
    SyncEngine,
)
from fleetsync.testing import EngineHarness

MAC = "AA:BB:CC:DD:EE:FF"
REGISTRATION = {"id": MAC, "local": "kitchen", "input": "fan", "output": "valve"}

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def harness() -> EngineHarness:
    """Started engine on namespace ``test``."""
    h = EngineHarness.create()
    await h.start()
    return h


def _errors(harness: EngineHarness) -> list[dict[str, object]]:
    return [args[0] for event, args in harness.hub.sent_to(harness.session) if event == "error"]


# ---------------------------------------------------------------------------
# TestStart
# ---------------------------------------------------------------------------


class TestStart:
    """Engine start-up wiring.

    Technique: Integration of components.
    """

    async def test_subscribes_to_announcements(self, harness: EngineHarness) -> None:
        assert harness.mqtt.subscriptions == ["test/device/+"]

    async def test_binds_every_intent(self, harness: EngineHarness) -> None:
        assert harness.hub.intents == {
            INTENT_REGISTER,
            INTENT_REQUEST_STATE,
            INTENT_PUSH_OUTPUT,
            INTENT_DELETE,
            INTENT_MESSAGE,
        }

    async def test_components_share_one_registry(self, engine: SyncEngine) -> None:
        assert engine.liveness is not None
        assert engine.registry is engine.commands._registry  # noqa: SLF001

    def test_rejects_invalid_namespace(self) -> None:
        with pytest.raises(ValueError, match="Invalid topic namespace"):
            EngineHarness.create(namespace="a/b")


# ---------------------------------------------------------------------------
# TestBusTraffic
# ---------------------------------------------------------------------------


class TestBusTraffic:
    """Bus messages flow into the registry and out to clients.

    Technique: Integration of components.
    """

    async def test_announcement_creates_pending_and_broadcasts(
        self,
        harness: EngineHarness,
    ) -> None:
        await harness.announce(MAC, local="kitchen")

        record = harness.registry.get(MAC)
        assert record is not None
        assert record.is_pending
        assert record.last_seen_at == 1000.0
        active, pending = harness.hub.broadcasts_of(STATE_EVENT)[-1]
        assert active == []
        assert [d["id"] for d in pending] == [MAC]

    async def test_measurement_reaches_registered_device(
        self,
        harness: EngineHarness,
    ) -> None:
        await harness.intent(INTENT_REGISTER, REGISTRATION)
        harness.clock.advance(5)

        await harness.measure("kitchen", "temperature", {"value": 21.5})

        record = harness.registry.get(MAC)
        assert record is not None
        assert record.temperature == 21.5
        assert record.last_seen_at == 1005.0

    async def test_unmatched_topic_ignored(self, harness: EngineHarness) -> None:
        harness.hub.reset()
        await harness.mqtt.deliver("elsewhere/device/x", "{}")
        assert harness.hub.broadcasts == []


# ---------------------------------------------------------------------------
# TestIntents
# ---------------------------------------------------------------------------


class TestIntents:
    """Client intents, including their accepted argument shapes.

    Technique: Equivalence Partitioning.
    """

    async def test_register(self, harness: EngineHarness) -> None:
        await harness.intent(INTENT_REGISTER, REGISTRATION)

        record = harness.registry.get(MAC)
        assert record is not None
        assert not record.is_pending
        assert harness.hub.broadcasts_of(REGISTERED_EVENT) == [(record.to_dict(),)]
        assert "test/zone/kitchen/+" in harness.mqtt.active_subscriptions

    async def test_request_state(self, harness: EngineHarness) -> None:
        await harness.intent(INTENT_REGISTER, REGISTRATION)

        await harness.intent(INTENT_REQUEST_STATE)

        [(event, (active, pending))] = harness.hub.sent_to(harness.session)
        assert event == STATE_EVENT
        assert [d["id"] for d in active] == [MAC]
        assert pending == []

    @pytest.mark.parametrize(
        "args",
        [(MAC, 1), ({"id": MAC, "value": 1},)],
        ids=["positional", "object"],
    )
    async def test_push_output_argument_forms(
        self,
        harness: EngineHarness,
        args: tuple[object, ...],
    ) -> None:
        await harness.intent(INTENT_REGISTER, REGISTRATION)

        await harness.intent(INTENT_PUSH_OUTPUT, *args)

        record = harness.registry.get(MAC)
        assert record is not None
        assert record.output.value == 1
        assert harness.mqtt.get_messages_for("test/zone/kitchen/output")

    @pytest.mark.parametrize("arg", [MAC, {"id": MAC}], ids=["id", "object"])
    async def test_delete_argument_forms(
        self,
        harness: EngineHarness,
        arg: object,
    ) -> None:
        await harness.intent(INTENT_REGISTER, REGISTRATION)

        await harness.intent(INTENT_DELETE, arg)

        record = harness.registry.get(MAC)
        assert record is not None
        assert record.is_pending

    async def test_message_relayed_to_every_session(self, harness: EngineHarness) -> None:
        published = harness.mqtt.publish_count

        await harness.intent(INTENT_MESSAGE, {"text": "valve stuck"})

        assert harness.hub.broadcasts == [("message", ({"text": "valve stuck"},))]
        assert harness.mqtt.publish_count == published
        assert len(harness.registry) == 0


# ---------------------------------------------------------------------------
# TestIntentErrors
# ---------------------------------------------------------------------------


class TestIntentErrors:
    """Failures go back to the issuing session only.

    Technique: Error Guessing.
    """

    @pytest.mark.parametrize(
        ("intent", "args"),
        [
            (INTENT_REGISTER, ()),
            (INTENT_REGISTER, ({"id": MAC},)),
            (INTENT_PUSH_OUTPUT, ()),
            (INTENT_PUSH_OUTPUT, (MAC, "on")),
            (INTENT_DELETE, ()),
            (INTENT_DELETE, (42,)),
        ],
    )
    async def test_malformed_reported(
        self,
        harness: EngineHarness,
        intent: str,
        args: tuple[object, ...],
    ) -> None:
        harness.hub.reset()

        await harness.intent(intent, *args)

        [error] = _errors(harness)
        assert error["error_type"] == "malformed"
        assert error["intent"] == intent
        assert harness.hub.broadcasts == []
        assert len(harness.registry) == 0

    @pytest.mark.parametrize(
        ("intent", "args"),
        [(INTENT_PUSH_OUTPUT, ("ghost", 1)), (INTENT_DELETE, ("ghost",))],
    )
    async def test_unknown_device_reported(
        self,
        harness: EngineHarness,
        intent: str,
        args: tuple[object, ...],
    ) -> None:
        await harness.intent(intent, *args)

        [error] = _errors(harness)
        assert error["error_type"] == "not_found"
        assert error["device"] == "ghost"
        assert harness.mqtt.published == []

    async def test_other_sessions_not_told(self, harness: EngineHarness) -> None:
        await harness.intent(INTENT_DELETE, "ghost")
        assert harness.hub.sent_to(ClientSession("bystander")) == []

    async def test_unexpected_crash_reported_as_generic_error(
        self,
        harness: EngineHarness,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def boom(_session: ClientSession) -> None:
            raise RuntimeError("kaput")

        monkeypatch.setattr(harness.engine.commands, "request_state", boom)

        await harness.intent(INTENT_REQUEST_STATE)

        [error] = _errors(harness)
        assert error["error_type"] == "error"
        assert error["message"] == "kaput"


# ---------------------------------------------------------------------------
# TestLifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """A device through its whole lifecycle.

    Technique: State Transition Testing.
    """

    async def test_announce_register_delete_reregister(
        self,
        harness: EngineHarness,
    ) -> None:
        await harness.announce(MAC, local="kitchen", input="fan", output="valve")
        assert harness.registry.get(MAC).is_pending  # type: ignore[union-attr]

        await harness.intent(INTENT_REGISTER, REGISTRATION)
        assert not harness.registry.get(MAC).is_pending  # type: ignore[union-attr]

        await harness.intent(INTENT_DELETE, MAC)
        assert harness.registry.get(MAC).is_pending  # type: ignore[union-attr]
        assert "test/zone/kitchen/+" not in harness.mqtt.active_subscriptions

        await harness.intent(INTENT_REGISTER, REGISTRATION)
        assert not harness.registry.get(MAC).is_pending  # type: ignore[union-attr]
        assert "test/zone/kitchen/+" in harness.mqtt.active_subscriptions

    async def test_silent_device_evicted_after_threshold(
        self,
        harness: EngineHarness,
    ) -> None:
        await harness.announce(MAC, local="kitchen")
        await harness.intent(INTENT_REGISTER, REGISTRATION)
        await harness.measure("kitchen", "humidity", {"value": 40})

        harness.clock.advance(61)
        evicted = await harness.engine.liveness.sweep()

        assert evicted == [MAC]
        assert MAC not in harness.registry
        active, pending = harness.hub.broadcasts_of(STATE_EVENT)[-1]
        assert (active, pending) == ([], [])
