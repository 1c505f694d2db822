"""Unit tests for AlertSink: history cap, cooldown and dismissal."""

from unittest.mock import MagicMock

import pytest

from swarm_fleet.alert_sink import AlertSink
from swarm_fleet.models import AlertLevel


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify.return_value = None
    return mock


@pytest.fixture
def sink(notifier, clock):
    return AlertSink(notifier=notifier, cooldown_seconds=300, clock=clock)


class TestHistory:
    """Tests for the bounded alert history."""

    def test_history_never_exceeds_limit(self, sink):
        for i in range(150):
            sink.record(AlertLevel.INFO, f"alert {i}", "test")

        history = sink.history()
        assert len(history) == 100
        assert len(sink) == 100

    def test_oldest_evicted_first(self, sink):
        for i in range(105):
            sink.record(AlertLevel.INFO, f"alert {i}", "test")

        history = sink.history()
        assert history[0].message == "alert 5"
        assert history[-1].message == "alert 104"

    def test_ids_are_unique_and_structured(self, sink):
        first = sink.record(AlertLevel.WARNING, "a", "queue-depth", category="queue-high")
        second = sink.record(AlertLevel.WARNING, "a", "queue-depth", category="queue-high")

        assert first.id != second.id
        assert first.id.source == "queue-depth"
        assert first.id.category == "queue-high"
        assert second.id.sequence == first.id.sequence + 1

    def test_invalid_limit_rejected(self):
        with pytest.raises(ValueError):
            AlertSink(history_limit=0)

    def test_clear(self, sink):
        sink.record(AlertLevel.INFO, "a", "test")
        sink.clear()
        assert sink.history() == []


class TestCooldown:
    """Tests for per (source, level) dispatch cooldown."""

    def test_first_alert_is_dispatched(self, sink, notifier):
        sink.emit(AlertLevel.ERROR, "boom", "agent-health", actions=("Restart Agent",))
        notifier.notify.assert_called_once_with(
            AlertLevel.ERROR, "boom", "agent-health", ("Restart Agent",)
        )

    def test_repeat_within_cooldown_is_recorded_not_dispatched(self, sink, notifier, clock):
        sink.emit(AlertLevel.ERROR, "first", "agent-health")
        clock.advance(299)
        sink.emit(AlertLevel.ERROR, "second", "agent-health")

        assert notifier.notify.call_count == 1
        assert [a.message for a in sink.history()] == ["first", "second"]

    def test_dispatch_resumes_after_cooldown(self, sink, notifier, clock):
        sink.emit(AlertLevel.ERROR, "first", "agent-health")
        clock.advance(300)
        sink.emit(AlertLevel.ERROR, "second", "agent-health")

        assert notifier.notify.call_count == 2

    def test_cooldown_is_per_source_and_level(self, sink, notifier):
        sink.emit(AlertLevel.ERROR, "a", "agent-health")
        sink.emit(AlertLevel.WARNING, "b", "agent-health")
        sink.emit(AlertLevel.ERROR, "c", "agent-stuck")

        assert notifier.notify.call_count == 3
        assert sink.can_dispatch("agent-health", AlertLevel.ERROR) is False
        assert sink.can_dispatch("budget", AlertLevel.ERROR) is True

    def test_info_is_never_dispatched(self, sink, notifier):
        sink.emit(AlertLevel.INFO, "fyi", "queue-depth")
        notifier.notify.assert_not_called()
        assert len(sink) == 1

    def test_returns_chosen_action(self, notifier, clock):
        notifier.notify.return_value = "Restart Agent"
        sink = AlertSink(notifier=notifier, clock=clock)

        alert, action = sink.emit(AlertLevel.ERROR, "stuck", "agent-stuck", actions=("Restart Agent",))

        assert action == "Restart Agent"
        assert alert.actions == ("Restart Agent",)

    def test_no_notifier_records_only(self, clock):
        sink = AlertSink(clock=clock)
        alert, action = sink.emit(AlertLevel.CRITICAL, "x", "budget")
        assert action is None
        assert sink.history() == [alert]


class TestDismiss:
    """Tests for dismissal."""

    def test_dismiss_marks_in_place(self, sink):
        alert = sink.record(AlertLevel.WARNING, "a", "test")
        other = sink.record(AlertLevel.WARNING, "b", "test")

        assert sink.dismiss(alert.id) is True
        assert alert.dismissed is True
        assert len(sink) == 2
        assert sink.active() == [other]

    def test_dismiss_by_string_id(self, sink):
        alert = sink.record(AlertLevel.WARNING, "a", "test")
        assert sink.dismiss(str(alert.id)) is True
        assert sink.find(alert.id).dismissed is True

    def test_dismiss_unknown_id(self, sink):
        assert sink.dismiss("test/general/999999") is False
