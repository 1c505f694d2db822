"""Tests for the logging and console notifiers."""

import logging

from rich.console import Console

from swarm_fleet.models import AlertLevel
from swarm_fleet.notifier import ACTION_DISMISS, ACTION_RESTART_AGENT, ConsoleNotifier, LoggingNotifier


class TestLoggingNotifier:
    def test_logs_at_matching_level(self, caplog):
        notifier = LoggingNotifier()
        with caplog.at_level(logging.INFO, logger="swarm_fleet.notifier"):
            action = notifier.notify(
                AlertLevel.ERROR,
                "Agent 3 is stuck",
                "agent-stuck",
                (ACTION_RESTART_AGENT, ACTION_DISMISS),
            )

        assert action is None
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "[agent-stuck] Agent 3 is stuck [actions: Restart Agent, Dismiss]"


class TestConsoleNotifier:
    def test_prints_message_and_actions(self):
        console = Console(record=True, width=120)
        notifier = ConsoleNotifier(console)

        action = notifier.notify(AlertLevel.WARNING, "Queue is high", "queue-depth", ("Dismiss",))

        text = console.export_text()
        assert action is None
        assert "WARNING" in text
        assert "queue-depth Queue is high" in text
        assert "Available actions: Dismiss" in text

    def test_markup_in_message_is_escaped(self):
        console = Console(record=True, width=120)
        ConsoleNotifier(console).notify(
            AlertLevel.ERROR, "! [rejected] main -> main", "branch-conflict"
        )
        assert "[rejected]" in console.export_text()
