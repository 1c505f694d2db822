"""
Structured JSONL event logging for Swarm Fleet.

This module provides:
- JSONL event logging for lifecycle audit trails
- Log files organized by component and date
- Log levels (debug, info, warn, error)
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from swarm_fleet.config import FleetConfig, get_config


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class FleetLogger:
    """
    JSONL event logger for one fleet component.

    Writes structured log entries to .swarm/logs/<component>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - component: Component name (e.g. "orchestrator")
    - data: Additional event data (dict)
    """

    def __init__(self, component: str, config: Optional[FleetConfig] = None) -> None:
        """
        Initialize logger for a component.

        Args:
            component: Component name used for the log file prefix.
            config: Optional config to use. If not provided, loads from config.yaml.
        """
        self.component = component
        self._config = config
        self._write_lock = threading.Lock()

    @property
    def config(self) -> FleetConfig:
        """Get configuration (lazy load)."""
        if self._config is None:
            self._config = get_config()
        return self._config

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        if date is None:
            date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.config.logs_path / f"{self.component}-{date}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Append a log entry to today's JSONL file."""
        log_path = self._get_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Agents log concurrently from their own threads
        with self._write_lock:
            with open(log_path, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "work_started", "health_tick").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "component": self.component,
            "data": data or {},
        }
        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.ERROR)

    def read_logs(
        self,
        date: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read log entries with optional filtering.

        Args:
            date: Date string (YYYY-MM-DD) to read. If None, reads today's logs.
            level: Filter by log level.
            event_type: Filter by event type.
            limit: Maximum number of entries to return.

        Returns:
            List of log entries matching the filters.
        """
        log_path = self._get_log_path(date)
        if not log_path.exists():
            return []

        entries = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level") != level:
                    continue
                if event_type and entry.get("event_type") != event_type:
                    continue

                entries.append(entry)

                if limit and len(entries) >= limit:
                    break

        return entries

    def get_log_files(self) -> list[Path]:
        """All log files for this component, newest first."""
        logs_dir = self.config.logs_path
        if not logs_dir.exists():
            return []
        files = list(logs_dir.glob(f"{self.component}-*.jsonl"))
        files.sort(reverse=True)
        return files


# Module-level logger cache
_logger_cache: dict[str, FleetLogger] = {}


def get_logger(component: str, config: Optional[FleetConfig] = None) -> FleetLogger:
    """
    Get or create a logger for a component.

    Args:
        component: The component name.
        config: Optional config to use.

    Returns:
        FleetLogger instance for the component.
    """
    if component not in _logger_cache:
        _logger_cache[component] = FleetLogger(component, config)
    return _logger_cache[component]


def clear_logger_cache() -> None:
    """Clear the logger cache. Useful for testing."""
    global _logger_cache
    _logger_cache = {}
