"""
Root conftest.py: Shared Pytest fixtures and configuration.

Provides fixtures for:
- A fresh default configuration.
- Validator, persistence and loader instances bound to temporary directories.
- A fake clock for cache expiry tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from hookconfig.config.loader import ConfigLoader
from hookconfig.config.model import build_default_configuration
from hookconfig.config.persistence import ConfigPersistence, PersistenceOptions
from hookconfig.config.validator import ConfigValidator


# ---------------------------------------------------------------------------
# Configuration Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def default_config() -> Dict[str, Any]:
    """Return a valid default configuration for the development environment."""
    return build_default_configuration("development")


@pytest.fixture
def validator() -> ConfigValidator:
    """Create a validator with the built-in schemas."""
    return ConfigValidator()


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create an empty temporary configuration directory."""
    directory = tmp_path / "config"
    directory.mkdir()
    return directory


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    """Return the temporary backup directory (created on first backup)."""
    return tmp_path / "backups"


@pytest.fixture
def persistence(backup_dir: Path, validator: ConfigValidator) -> ConfigPersistence:
    """Create a persistence layer writing backups under tmp_path."""
    return ConfigPersistence(PersistenceOptions(backup_dir=backup_dir), validator=validator)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def loader(config_dir: Path, clock: FakeClock) -> ConfigLoader:
    """Create a loader over the temporary config dir with no environment variables."""
    return ConfigLoader(config_dir, environ={}, clock=clock)


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom Pytest markers."""
    config.addinivalue_line(
        "markers",
        "cli: Tests that drive the command-line entry point",
    )
