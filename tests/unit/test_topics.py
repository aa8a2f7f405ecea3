"""Tests for fleetsync._topics — topic classification and builders.

Test Techniques Used:
    - Specification-based Testing: announcement and measurement shapes
    - Equivalence Partitioning: MAC delimiter variants, foreign namespaces
    - Error Guessing: wildcards and empty segments in zones/namespaces
"""

from __future__ import annotations

import pytest

from fleetsync._topics import (
    Announce,
    Measurement,
    MeasurementKind,
    TopicMatcher,
    Unmatched,
    is_mac_address,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def matcher() -> TopicMatcher:
    """Matcher on the ``greenhouse`` namespace."""
    return TopicMatcher("greenhouse")


# ---------------------------------------------------------------------------
# TestIsMacAddress
# ---------------------------------------------------------------------------


class TestIsMacAddress:
    """MAC address recognition.

    Technique: Equivalence Partitioning.
    """

    @pytest.mark.parametrize(
        "value",
        ["AA:BB:CC:DD:EE:FF", "aa:bb:cc:dd:ee:ff", "01-23-45-67-89-ab"],
    )
    def test_accepts_consistent_delimiters(self, value: str) -> None:
        assert is_mac_address(value)

    @pytest.mark.parametrize(
        "value",
        [
            "AA:BB-CC:DD:EE:FF",
            "AABBCCDDEEFF",
            "AA:BB:CC:DD:EE",
            "AA:BB:CC:DD:EE:FF:00",
            "GG:BB:CC:DD:EE:FF",
            "",
        ],
    )
    def test_rejects_malformed(self, value: str) -> None:
        assert not is_mac_address(value)


# ---------------------------------------------------------------------------
# TestMatch
# ---------------------------------------------------------------------------


class TestMatch:
    """Topic classification.

    Technique: Specification-based Testing.
    """

    def test_announcement(self, matcher: TopicMatcher) -> None:
        route = matcher.match("greenhouse/device/AA:BB:CC:DD:EE:FF")
        assert route == Announce(mac_address="AA:BB:CC:DD:EE:FF")

    def test_announcement_requires_mac_segment(self, matcher: TopicMatcher) -> None:
        route = matcher.match("greenhouse/device/kitchen-sensor")
        assert isinstance(route, Unmatched)

    @pytest.mark.parametrize(
        ("suffix", "kind"),
        [
            ("temperature", MeasurementKind.TEMPERATURE),
            ("humidity", MeasurementKind.HUMIDITY),
            ("input", MeasurementKind.ACTUATOR_ECHO),
        ],
    )
    def test_measurements(
        self,
        matcher: TopicMatcher,
        suffix: str,
        kind: MeasurementKind,
    ) -> None:
        route = matcher.match(f"greenhouse/zone/bed-1/{suffix}")
        assert route == Measurement(zone="bed-1", kind=kind)

    @pytest.mark.parametrize(
        "topic",
        [
            "greenhouse/zone/bed-1/output",
            "greenhouse/zone/bed-1/pressure",
            "greenhouse/zone//temperature",
            "greenhouse/zone/bed-1/temperature/extra",
            "greenhouse/zone/bed-1",
            "greenhouse/bridge/status",
            "other/device/AA:BB:CC:DD:EE:FF",
            "greenhouse2/zone/bed-1/temperature",
            "greenhouse",
            "",
        ],
    )
    def test_everything_else_is_unmatched(
        self,
        matcher: TopicMatcher,
        topic: str,
    ) -> None:
        route = matcher.match(topic)
        assert route == Unmatched(topic=topic)

    def test_non_string_topic_is_unmatched(self, matcher: TopicMatcher) -> None:
        route = matcher.match(None)  # type: ignore[arg-type]
        assert isinstance(route, Unmatched)

    def test_output_echo_of_own_command_is_ignored(self, matcher: TopicMatcher) -> None:
        """The bridge's own output pushes must not loop back as measurements."""
        assert isinstance(matcher.match(matcher.command_topic("bed-1")), Unmatched)


# ---------------------------------------------------------------------------
# TestBuilders
# ---------------------------------------------------------------------------


class TestBuilders:
    """Topic and filter construction.

    Technique: Specification-based Testing + Error Guessing.
    """

    def test_announce_filter(self, matcher: TopicMatcher) -> None:
        assert matcher.announce_filter == "greenhouse/device/+"

    def test_announce_topic(self, matcher: TopicMatcher) -> None:
        assert matcher.announce_topic("AA:BB:CC:DD:EE:FF") == (
            "greenhouse/device/AA:BB:CC:DD:EE:FF"
        )

    def test_zone_topics(self, matcher: TopicMatcher) -> None:
        assert matcher.measurement_filter("bed-1") == "greenhouse/zone/bed-1/+"
        assert matcher.command_topic("bed-1") == "greenhouse/zone/bed-1/output"
        assert (
            matcher.measurement_topic("bed-1", MeasurementKind.HUMIDITY)
            == "greenhouse/zone/bed-1/humidity"
        )

    def test_built_measurement_topic_round_trips(self, matcher: TopicMatcher) -> None:
        topic = matcher.measurement_topic("bed-1", MeasurementKind.ACTUATOR_ECHO)
        assert matcher.match(topic) == Measurement(
            zone="bed-1",
            kind=MeasurementKind.ACTUATOR_ECHO,
        )

    @pytest.mark.parametrize("zone", ["", "a/b", "+", "#", "bed#1"])
    def test_invalid_zone_rejected(self, matcher: TopicMatcher, zone: str) -> None:
        with pytest.raises(ValueError, match="Invalid zone"):
            matcher.measurement_filter(zone)
        with pytest.raises(ValueError, match="Invalid zone"):
            matcher.command_topic(zone)

    @pytest.mark.parametrize("namespace", ["", "a/b", "ns+", "#"])
    def test_invalid_namespace_rejected(self, namespace: str) -> None:
        with pytest.raises(ValueError, match="Invalid topic namespace"):
            TopicMatcher(namespace)

    def test_namespace_property(self, matcher: TopicMatcher) -> None:
        assert matcher.namespace == "greenhouse"
