"""Tests for fleetsync._health — bridge heartbeat and availability.

Test Techniques Used:
    - Specification-based Testing: HeartbeatPayload and will construction
    - State-based Testing: HealthReporter publishes to the status topic
    - Mock-based Isolation: MockMqttClient records publish calls
    - Clock Injection: Deterministic uptime via FakeClock
    - Exception Safety: _safe_publish swallows and logs errors
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import FrozenInstanceError

import pytest

from fleetsync._health import (
    FleetCounts,
    HealthReporter,
    HeartbeatPayload,
    build_will_config,
    status_topic,
)
from fleetsync._registry import DeviceRecord, DeviceRegistry
from fleetsync.testing import FakeClock, MockMqttClient

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def reporter(
    mock_mqtt: MockMqttClient,
    fake_clock: FakeClock,
    registry: DeviceRegistry,
) -> HealthReporter:
    """HealthReporter on namespace ``ns`` started at t=1000."""
    return HealthReporter(
        mqtt=mock_mqtt,
        namespace="ns",
        version="1.0.0",
        clock=fake_clock,
        registry=registry,
    )


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class TestHeartbeatPayload:
    """Heartbeat value object.

    Technique: Specification-based Testing.
    """

    def test_to_json(self) -> None:
        payload = HeartbeatPayload(
            status="online",
            uptime_s=12.5,
            version="1.0.0",
            devices=FleetCounts(active=2, pending=1),
        )
        assert json.loads(payload.to_json()) == {
            "status": "online",
            "uptime_s": 12.5,
            "version": "1.0.0",
            "devices": {"active": 2, "pending": 1},
        }

    def test_is_frozen(self) -> None:
        payload = HeartbeatPayload(status="online", uptime_s=0.0, version="1")
        with pytest.raises(FrozenInstanceError):
            payload.status = "offline"  # type: ignore[misc]


class TestWillConfig:
    """Last-will construction.

    Technique: Specification-based Testing.
    """

    def test_status_topic(self) -> None:
        assert status_topic("ns") == "ns/bridge/status"

    def test_will_is_retained_offline(self) -> None:
        will = build_will_config("ns")
        assert will.topic == "ns/bridge/status"
        assert will.payload == "offline"
        assert will.retain is True
        assert will.qos == 1


# ---------------------------------------------------------------------------
# HealthReporter
# ---------------------------------------------------------------------------


class TestHealthReporter:
    """Heartbeat publication.

    Technique: State-based Testing + Clock Injection.
    """

    def test_build_heartbeat_counts_partition(
        self,
        reporter: HealthReporter,
        registry: DeviceRegistry,
        fake_clock: FakeClock,
    ) -> None:
        registry.set("a", DeviceRecord(id="a"))
        registry.set("b", DeviceRecord(id="b"))
        registry.set("c", DeviceRecord(id="c", is_pending=True))
        fake_clock.advance(30)

        heartbeat = reporter.build_heartbeat()

        assert heartbeat.uptime_s == 30.0
        assert heartbeat.devices == FleetCounts(active=2, pending=1)

    async def test_publish_heartbeat_retained(
        self,
        reporter: HealthReporter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await reporter.publish_heartbeat()

        [(payload, retain, qos)] = mock_mqtt.get_messages_for("ns/bridge/status")
        assert json.loads(payload)["status"] == "online"
        assert json.loads(payload)["version"] == "1.0.0"
        assert retain is True
        assert qos == 1

    async def test_shutdown_publishes_offline(
        self,
        reporter: HealthReporter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await reporter.shutdown()
        assert mock_mqtt.published == [("ns/bridge/status", "offline", True, 1)]

    async def test_publish_failure_swallowed(
        self,
        fake_clock: FakeClock,
        registry: DeviceRegistry,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        reporter = HealthReporter(
            mqtt=MockMqttClient(fail_publish=True),
            namespace="ns",
            version="1",
            clock=fake_clock,
            registry=registry,
        )
        await reporter.publish_heartbeat()
        await reporter.shutdown()
        assert caplog.text.count("Failed to publish health to ns/bridge/status") == 2

    async def test_run_publishes_periodically(
        self,
        reporter: HealthReporter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        task = asyncio.create_task(reporter.run(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert mock_mqtt.publish_count >= 2
