"""Notification sinks for alerts and branch escalations.

A notifier receives (level, message, source, actions) and may return the
action the operator picked. Non-interactive notifiers return None.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from rich.console import Console
from rich.markup import escape

from swarm_fleet.models import AlertLevel


# Action labels offered with notifications
ACTION_RESTART_AGENT = "Restart Agent"
ACTION_DISMISS = "Dismiss"
ACTION_VIEW_CONFLICTS = "View Conflicts"
ACTION_RESOLVE_MANUALLY = "Resolve Manually"


class Notifier(Protocol):
    """Host UI surface that shows notifications to an operator."""

    def notify(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        actions: Sequence[str] = (),
    ) -> Optional[str]:
        ...


class LoggingNotifier:
    """Writes notifications to the standard logging tree."""

    _LOG_LEVELS = {
        AlertLevel.INFO: logging.INFO,
        AlertLevel.WARNING: logging.WARNING,
        AlertLevel.ERROR: logging.ERROR,
        AlertLevel.CRITICAL: logging.CRITICAL,
    }

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def notify(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        actions: Sequence[str] = (),
    ) -> Optional[str]:
        suffix = f" [actions: {', '.join(actions)}]" if actions else ""
        self._logger.log(self._LOG_LEVELS[level], f"[{source}] {message}{suffix}")
        return None


class ConsoleNotifier:
    """Prints notifications with Rich, styled by level."""

    STYLES = {
        AlertLevel.INFO: "dim",
        AlertLevel.WARNING: "yellow",
        AlertLevel.ERROR: "red",
        AlertLevel.CRITICAL: "bold red",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(stderr=True)

    def notify(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        actions: Sequence[str] = (),
    ) -> Optional[str]:
        style = self.STYLES[level]
        self.console.print(f"[{style}]{level.value.upper()}[/{style}] [cyan]{escape(source)}[/cyan] {escape(message)}")
        if actions:
            self.console.print(f"  [dim]Available actions: {', '.join(actions)}[/dim]")
        return None
