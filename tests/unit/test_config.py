"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from swarm_fleet.config import (
    ConfigError,
    FleetConfig,
    clear_config_cache,
    get_config,
    load_config,
)


@pytest.fixture
def write_config(tmp_path):
    """Write a config.yaml into tmp_path and return its path."""
    def _write(text: str) -> Path:
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return path
    return _write


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))

    def test_empty_file_uses_defaults(self, write_config, tmp_path):
        config = load_config(str(write_config("")))

        assert config.git.base_branch == "main"
        assert config.git.remote == "origin"
        assert config.git.command_timeout_seconds == 60.0
        assert config.git.create_budget_seconds == 10.0
        assert config.health.check_interval_seconds == 60.0
        assert config.health.notification_cooldown_seconds == 300.0
        assert config.health.heartbeat_unresponsive_seconds == 120.0
        assert config.health.stuck_threshold_minutes == 30.0
        assert config.health.alert_history_limit == 100
        assert config.budget.daily_limit_usd == 50.0
        assert config.budget.monthly_limit_usd == 1000.0

    def test_repo_root_defaults_to_config_directory(self, write_config, tmp_path):
        config = load_config(str(write_config("git:\n  base_branch: develop\n")))
        assert Path(config.repo_root) == tmp_path.absolute()
        assert config.logs_path == tmp_path.absolute() / ".swarm" / "logs"
        assert config.cost_log_path == tmp_path.absolute() / ".swarm" / "cost-log.json"

    def test_sections_are_parsed(self, write_config):
        config = load_config(str(write_config(
            "git:\n"
            "  base_branch: develop\n"
            "  remote: upstream\n"
            "health:\n"
            "  check_interval_seconds: 30\n"
            "  notification_cooldown_seconds: 0\n"
            "budget:\n"
            "  daily_limit_usd: 10\n"
        )))

        assert config.git.base_branch == "develop"
        assert config.git.remote == "upstream"
        assert config.health.check_interval_seconds == 30.0
        assert config.health.notification_cooldown_seconds == 0.0
        assert config.budget.daily_limit_usd == 10.0

    def test_env_vars_are_resolved(self, write_config, monkeypatch):
        monkeypatch.setenv("FLEET_BASE", "trunk")
        config = load_config(str(write_config("git:\n  base_branch: ${FLEET_BASE}\n")))
        assert config.git.base_branch == "trunk"

    def test_unset_env_var_raises(self, write_config, monkeypatch):
        monkeypatch.delenv("FLEET_UNSET_VAR", raising=False)
        with pytest.raises(ConfigError, match="FLEET_UNSET_VAR"):
            load_config(str(write_config("git:\n  remote: ${FLEET_UNSET_VAR}\n")))

    def test_invalid_yaml_raises(self, write_config):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(str(write_config("git: [unclosed\n")))

    def test_non_mapping_raises(self, write_config):
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(write_config("- a\n- b\n")))

    def test_non_positive_timeout_raises(self, write_config):
        with pytest.raises(ConfigError, match="command_timeout_seconds"):
            load_config(str(write_config("git:\n  command_timeout_seconds: 0\n")))

    def test_degraded_must_not_exceed_unresponsive(self, write_config):
        with pytest.raises(ConfigError, match="heartbeat_degraded_seconds"):
            load_config(str(write_config(
                "health:\n  heartbeat_degraded_seconds: 200\n  heartbeat_unresponsive_seconds: 120\n"
            )))


class TestConfigCache:
    """Tests for get_config() caching."""

    def test_get_config_caches(self, write_config):
        path = str(write_config(""))
        first = get_config(path)
        assert get_config(path) is first

    def test_force_reload(self, write_config):
        path = str(write_config(""))
        first = get_config(path)
        assert get_config(path, force_reload=True) is not first

    def test_clear_cache(self, write_config):
        path = str(write_config(""))
        first = get_config(path)
        clear_config_cache()
        assert get_config(path) is not first


class TestFleetConfig:
    def test_repo_root_made_absolute(self):
        config = FleetConfig(repo_root=".")
        assert Path(config.repo_root).is_absolute()
