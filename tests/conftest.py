"""Shared fixtures for swarm-fleet tests."""

import pytest
from typer.testing import CliRunner

from swarm_fleet.config import FleetConfig, clear_config_cache
from swarm_fleet.logger import clear_logger_cache


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Deterministic clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def fleet_config(tmp_path):
    """FleetConfig rooted in a temporary directory."""
    return FleetConfig(repo_root=str(tmp_path))


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_caches():
    """Module-level caches must not leak between tests."""
    clear_config_cache()
    clear_logger_cache()
    yield
    clear_config_cache()
    clear_logger_cache()
