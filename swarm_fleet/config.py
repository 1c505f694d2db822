"""
Configuration loading and validation for Swarm Fleet.

This module handles:
- Loading config.yaml from the project root
- Environment variable resolution (${VAR} syntax)
- Default values for every section
- Caching of the loaded configuration
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class GitConfig:
    """Git configuration for per-agent branches."""
    base_branch: str = "main"                  # Integration branch agents stay in sync with
    remote: str = "origin"                     # Remote holding the baseline and agent branches
    command_timeout_seconds: float = 60.0      # Timeout for every git invocation
    create_budget_seconds: float = 10.0        # Warn when branch creation takes longer
    worktrees_root: str = ".swarm/worktrees"   # Per-agent working copies live here


@dataclass
class HealthConfig:
    """Fleet health monitoring configuration."""
    check_interval_seconds: float = 60.0       # Period of the evaluation loop
    notification_cooldown_seconds: float = 300.0  # Per (source, level) dispatch cooldown
    tick_budget_seconds: float = 5.0           # Tick window; caps source waits, warn when exceeded
    source_timeout_seconds: float = 5.0        # Longest wait for any data-source call
    heartbeat_degraded_seconds: float = 60.0   # Silence before an agent is degraded
    heartbeat_unresponsive_seconds: float = 120.0  # Silence before an agent is unresponsive
    stuck_threshold_minutes: float = 30.0      # No progress before an agent is stuck
    alert_history_limit: int = 100             # Alerts retained in history


@dataclass
class BudgetConfig:
    """Spend limits for the local cost ledger."""
    daily_limit_usd: float = 50.0
    monthly_limit_usd: float = 1000.0
    cost_log: str = ".swarm/cost-log.json"


@dataclass
class FleetConfig:
    """
    Main configuration for Swarm Fleet.

    This is the top-level config loaded from config.yaml.
    """
    # Paths
    repo_root: str = "."
    swarm_dir: str = ".swarm"

    # Nested configurations
    git: GitConfig = field(default_factory=GitConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)

    def __post_init__(self) -> None:
        """Convert paths to absolute paths based on repo_root."""
        self.repo_root = str(Path(self.repo_root).absolute())

    @property
    def swarm_path(self) -> Path:
        """Absolute path to .swarm directory."""
        return Path(self.repo_root) / self.swarm_dir

    @property
    def logs_path(self) -> Path:
        """Absolute path to logs directory."""
        return self.swarm_path / "logs"

    @property
    def worktrees_path(self) -> Path:
        """Absolute path to the per-agent working copies."""
        return Path(self.repo_root) / self.git.worktrees_root

    @property
    def cost_log_path(self) -> Path:
        """Absolute path to the JSON cost log."""
        return Path(self.repo_root) / self.budget.cost_log


# Module-level cache for the loaded configuration
_config_cache: Optional[FleetConfig] = None


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _positive(section: str, key: str, value: Any) -> float:
    """Validate that a numeric setting is positive."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{section}.{key} must be positive, got {value!r}")
    return number


def _parse_git_config(data: dict[str, Any]) -> GitConfig:
    """Parse git configuration from dict."""
    return GitConfig(
        base_branch=data.get("base_branch", "main"),
        remote=data.get("remote", "origin"),
        command_timeout_seconds=_positive(
            "git", "command_timeout_seconds", data.get("command_timeout_seconds", 60.0)
        ),
        create_budget_seconds=_positive(
            "git", "create_budget_seconds", data.get("create_budget_seconds", 10.0)
        ),
        worktrees_root=data.get("worktrees_root", ".swarm/worktrees"),
    )


def _parse_health_config(data: dict[str, Any]) -> HealthConfig:
    """Parse health configuration from dict."""
    degraded = _positive(
        "health", "heartbeat_degraded_seconds", data.get("heartbeat_degraded_seconds", 60.0)
    )
    unresponsive = _positive(
        "health", "heartbeat_unresponsive_seconds", data.get("heartbeat_unresponsive_seconds", 120.0)
    )
    if degraded > unresponsive:
        raise ConfigError(
            "health.heartbeat_degraded_seconds must not exceed health.heartbeat_unresponsive_seconds"
        )
    return HealthConfig(
        check_interval_seconds=_positive(
            "health", "check_interval_seconds", data.get("check_interval_seconds", 60.0)
        ),
        notification_cooldown_seconds=float(data.get("notification_cooldown_seconds", 300.0)),
        tick_budget_seconds=_positive(
            "health", "tick_budget_seconds", data.get("tick_budget_seconds", 5.0)
        ),
        source_timeout_seconds=_positive(
            "health", "source_timeout_seconds", data.get("source_timeout_seconds", 5.0)
        ),
        heartbeat_degraded_seconds=degraded,
        heartbeat_unresponsive_seconds=unresponsive,
        stuck_threshold_minutes=_positive(
            "health", "stuck_threshold_minutes", data.get("stuck_threshold_minutes", 30.0)
        ),
        alert_history_limit=int(data.get("alert_history_limit", 100)),
    )


def _parse_budget_config(data: dict[str, Any]) -> BudgetConfig:
    """Parse budget configuration from dict."""
    return BudgetConfig(
        daily_limit_usd=_positive("budget", "daily_limit_usd", data.get("daily_limit_usd", 50.0)),
        monthly_limit_usd=_positive(
            "budget", "monthly_limit_usd", data.get("monthly_limit_usd", 1000.0)
        ),
        cost_log=data.get("cost_log", ".swarm/cost-log.json"),
    )


def load_config(config_path: Optional[str] = None) -> FleetConfig:
    """
    Load configuration from config.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for config.yaml in current directory.

    Returns:
        FleetConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    if config_path is None:
        config_path = "config.yaml"

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    data = _resolve_env_vars(raw_data)

    return FleetConfig(
        repo_root=data.get("repo_root", str(path.absolute().parent)),
        swarm_dir=data.get("swarm_dir", ".swarm"),
        git=_parse_git_config(data.get("git") or {}),
        health=_parse_health_config(data.get("health") or {}),
        budget=_parse_budget_config(data.get("budget") or {}),
    )


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> FleetConfig:
    """
    Get the cached configuration, loading it if necessary.

    Args:
        config_path: Optional path to config file.
        force_reload: If True, reload configuration even if cached.

    Returns:
        FleetConfig: The loaded configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path)

    return _config_cache


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
