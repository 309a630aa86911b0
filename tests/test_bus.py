"""
Tests for the change notification bus.
"""

import logging

import pytest

from shaadi_kv.bus import ALL_KEYS, BusEvent, ChangeBus, ChangeKind, ChangeSource


@pytest.fixture
def bus() -> ChangeBus:
    return ChangeBus()


class TestSubscribe:
    """Test subscription bookkeeping."""

    def test_exact_key_delivery(self, bus: ChangeBus) -> None:
        """Test subscribers only hear about their own key."""
        profiles: list[BusEvent] = []
        users: list[BusEvent] = []
        bus.subscribe("profiles", profiles.append)
        bus.subscribe("users", users.append)

        delivered = bus.publish("profiles")

        assert delivered == 1
        assert [event.key for event in profiles] == ["profiles"]
        assert users == []

    def test_no_prefix_matching(self, bus: ChangeBus) -> None:
        """Test keys are matched exactly, not by prefix."""
        events: list[BusEvent] = []
        bus.subscribe("profile", events.append)

        assert bus.publish("profiles") == 0
        assert events == []

    def test_unsubscribe_removes_callback(self, bus: ChangeBus) -> None:
        """Test cancelled subscriptions stop receiving and are cleaned up."""
        events: list[BusEvent] = []
        unsubscribe = bus.subscribe("settings", events.append)

        unsubscribe()
        bus.publish("settings")

        assert events == []
        assert bus.subscriber_count() == 0

    def test_unsubscribe_is_idempotent(self, bus: ChangeBus) -> None:
        """Test calling unsubscribe twice does not remove a sibling subscription."""
        first: list[BusEvent] = []
        second: list[BusEvent] = []
        unsubscribe = bus.subscribe("settings", first.append)
        bus.subscribe("settings", second.append)

        unsubscribe()
        unsubscribe()
        bus.publish("settings")

        assert first == []
        assert len(second) == 1
        assert bus.subscriber_count("settings") == 1

    def test_subscriber_count(self, bus: ChangeBus) -> None:
        """Test counts per key and in total."""
        bus.subscribe("profiles", lambda event: None)
        bus.subscribe("profiles", lambda event: None)
        bus.subscribe("users", lambda event: None)

        assert bus.subscriber_count("profiles") == 2
        assert bus.subscriber_count("messages") == 0
        assert bus.subscriber_count() == 3


class TestPublish:
    """Test event delivery."""

    def test_event_carries_kind_source_and_record(self, bus: ChangeBus) -> None:
        """Test published fields reach the subscriber unchanged."""
        events: list[BusEvent] = []
        bus.subscribe("profiles", events.append)

        bus.publish(
            "profiles",
            kind=ChangeKind.CHANGED,
            source=ChangeSource.CROSS_PROCESS,
            record={"value": []},
        )

        assert events == [
            BusEvent(
                key="profiles",
                kind=ChangeKind.CHANGED,
                source=ChangeSource.CROSS_PROCESS,
                record={"value": []},
            )
        ]

    def test_broadcast_reaches_every_key(self, bus: ChangeBus) -> None:
        """Test an all-keys force refresh is delivered to every subscriber."""
        events: list[BusEvent] = []
        bus.subscribe("profiles", events.append)
        bus.subscribe("users", events.append)

        delivered = bus.publish(ALL_KEYS, ChangeKind.FORCE_REFRESH)

        assert delivered == 2
        assert {event.kind for event in events} == {ChangeKind.FORCE_REFRESH}
        assert {event.key for event in events} == {ALL_KEYS}

    def test_broadcast_requires_force_refresh(self, bus: ChangeBus) -> None:
        """Test ordinary changes cannot be sent to all keys."""
        with pytest.raises(ValueError):
            bus.publish(ALL_KEYS, ChangeKind.CHANGED)

    def test_keyed_force_refresh_reaches_wildcard_listeners(self, bus: ChangeBus) -> None:
        """Test all-keys listeners hear keyed force refreshes but not ordinary changes."""
        events: list[BusEvent] = []
        bus.subscribe(ALL_KEYS, events.append)

        bus.publish("profiles", ChangeKind.CHANGED)
        bus.publish("profiles", ChangeKind.FORCE_REFRESH)

        assert [(event.key, event.kind) for event in events] == [
            ("profiles", ChangeKind.FORCE_REFRESH)
        ]

    def test_wildcard_listeners_hear_force_refresh_first(self, bus: ChangeBus) -> None:
        """Test all-keys listeners run before per-key listeners for both forms."""
        order: list[str] = []
        bus.subscribe("profiles", lambda event: order.append("profiles"))
        bus.subscribe(ALL_KEYS, lambda event: order.append("all"))

        bus.publish("profiles", ChangeKind.FORCE_REFRESH)
        bus.publish(ALL_KEYS, ChangeKind.FORCE_REFRESH)

        assert order == ["all", "profiles", "all", "profiles"]

    def test_failing_subscriber_does_not_stop_delivery(
        self, bus: ChangeBus, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test one broken callback is logged and the rest still run."""
        events: list[BusEvent] = []

        def broken(event: BusEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe("settings", broken)
        bus.subscribe("settings", events.append)

        with caplog.at_level(logging.ERROR, logger="shaadi_kv"):
            assert bus.publish("settings") == 2

        assert len(events) == 1
        assert "Bus subscriber failed" in caplog.text

    def test_subscribe_during_publish_takes_effect_next_time(self, bus: ChangeBus) -> None:
        """Test delivery iterates over a snapshot of subscribers."""
        late: list[BusEvent] = []

        def subscribe_more(event: BusEvent) -> None:
            bus.subscribe("settings", late.append)

        bus.subscribe("settings", subscribe_more)

        bus.publish("settings")
        assert late == []

        bus.publish("settings")
        assert len(late) == 1
