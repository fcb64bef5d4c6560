"""
Tests for version comparison and configuration migrations.
"""

from __future__ import annotations

from typing import Any, Dict

import pytest

from hookconfig.config.errors import MigrationError
from hookconfig.config.version_compat import (
    VersionCompatManager,
    compare_versions,
    parse_version,
)


@pytest.fixture
def legacy_config() -> Dict[str, Any]:
    """Return a configuration written for schema v0.9.0."""
    return {
        "version": "0.9.0",
        "global": {"maxHookExecutionTime": 150, "logLevel": "info"},
        "factory": {},
        "featureFlags": {},
    }


class TestVersionComparison:
    """Tests for version parsing and comparison."""

    def test_parse_version(self) -> None:
        """Test parsing, padding and non-numeric parts."""
        assert parse_version("1.2.3") == (1, 2, 3)
        assert parse_version("2") == (2, 0, 0)
        assert parse_version("1.x.3") == (1, 0, 3)

    def test_compare_versions(self) -> None:
        """Test the comparison flags and signed difference."""
        newer = compare_versions("1.2.0", "1.0.5")
        assert newer.is_newer and not newer.is_older
        assert newer.difference == 2

        older = compare_versions("0.9.0", "1.0.0")
        assert older.is_older
        assert older.difference == -1

        assert compare_versions("1.0", "1.0.0").is_equal

    @pytest.mark.parametrize(
        "a, b",
        [
            ("1.0.0", "1.0.0"),
            ("1.2.0", "1.0.5"),
            ("0.9.0", "1.0.0"),
            ("2.0.0", "1.99.99"),
            ("1.0", "1.0.1"),
            ("1.x.3", "1.0.2"),
        ],
    )
    def test_comparison_is_antisymmetric(self, a: str, b: str) -> None:
        """Test that swapping the operands swaps newer and older."""
        forward = compare_versions(a, b)
        backward = compare_versions(b, a)

        assert forward.is_newer == backward.is_older
        assert forward.is_older == backward.is_newer
        assert forward.is_equal == backward.is_equal
        assert forward.difference == -backward.difference
        assert [forward.is_newer, forward.is_older, forward.is_equal].count(True) == 1

    def test_validate_version_format(self) -> None:
        """Test the x.y.z format check with the per-part limit."""
        manager = VersionCompatManager()
        assert manager.validate_version_format("1.0.0") == []
        assert manager.validate_version_format("1.0") != []
        assert manager.validate_version_format("1.100.0") == ["Minor version part 100 exceeds 99"]


class TestMigrations:
    """Tests for migration path finding and application."""

    def test_builtin_migration_adds_caching_defaults(self, legacy_config: Dict[str, Any]) -> None:
        """Test that 0.9.0 -> 1.0.0 adds caching and job settings without touching existing ones."""
        manager = VersionCompatManager()
        result = manager.migrate_configuration(legacy_config, "0.9.0", "1.0.0")

        assert result.success
        migrated = result.migrated_config
        assert migrated["version"] == "1.0.0"
        assert migrated["global"]["enableCaching"] is True
        assert migrated["global"]["backgroundJobTimeout"] == 30000
        assert migrated["global"]["maxHookExecutionTime"] == 150
        assert result.applied_migrations == ["0.9.0 -> 1.0.0"]

    def test_input_not_modified(self, legacy_config: Dict[str, Any]) -> None:
        """Test that migrations work on a copy."""
        VersionCompatManager().migrate_configuration(legacy_config, "0.9.0", "1.0.0")
        assert legacy_config["version"] == "0.9.0"
        assert "enableCaching" not in legacy_config["global"]

    def test_same_version(self, legacy_config: Dict[str, Any]) -> None:
        """Test that migrating to the same version is a successful no-op."""
        result = VersionCompatManager().migrate_configuration(legacy_config, "0.9.0", "0.9.0")

        assert result.success
        assert result.warnings == ["Configuration is already at target version"]
        assert result.migrated_config == legacy_config

    def test_downgrade_refused(self, legacy_config: Dict[str, Any]) -> None:
        """Test that migrating to an older version fails."""
        result = VersionCompatManager().migrate_configuration(legacy_config, "1.0.0", "0.9.0")

        assert not result.success
        assert result.errors == ["Cannot migrate to older version: 1.0.0 -> 0.9.0"]

    def test_no_path(self) -> None:
        """Test that a missing chain raises from get_migration_path."""
        manager = VersionCompatManager()
        with pytest.raises(MigrationError, match="No migration path found from 0.5.0 to 1.0.0"):
            manager.get_migration_path("0.5.0", "1.0.0")
        assert not manager.is_migration_available("0.5.0", "1.0.0")

    def test_multi_step_path(self, legacy_config: Dict[str, Any]) -> None:
        """Test chaining custom migrations after the built-in one."""
        manager = VersionCompatManager(current_version="1.2.0")

        @manager.register_migration("1.0.0", "1.1.0", description="Rename retries")
        def _rename(config: Dict[str, Any]) -> Dict[str, Any]:
            config["global"]["retryAttempts"] = config["global"].pop("retries", 2)
            return config

        @manager.register_migration("1.1.0", "1.2.0")
        def _flag(config: Dict[str, Any]) -> Dict[str, Any]:
            """Enable hook chaining."""
            config["featureFlags"]["enableHookChaining"] = True
            return config

        path = manager.get_migration_path("0.9.0", "1.2.0")
        assert [m.name for m in path] == ["0.9.0 -> 1.0.0", "1.0.0 -> 1.1.0", "1.1.0 -> 1.2.0"]
        assert path[2].description == "Enable hook chaining."

        migrated = manager.migrate(legacy_config)
        assert migrated["version"] == "1.2.0"
        assert migrated["featureFlags"]["enableHookChaining"] is True
        assert len(manager.get_version_history()) == 3

    def test_cyclic_registrations_terminate(self) -> None:
        """Test that a cycle in the migration graph cannot loop forever."""
        manager = VersionCompatManager(register_builtins=False)
        manager.register_migration("1.0.0", "1.1.0")(lambda c: c)
        manager.register_migration("1.1.0", "1.0.0")(lambda c: c)

        with pytest.raises(MigrationError):
            manager.get_migration_path("1.0.0", "2.0.0")

    def test_failing_step_aborts(self, legacy_config: Dict[str, Any]) -> None:
        """Test that an exception in a step aborts with no history recorded."""
        manager = VersionCompatManager(current_version="1.1.0")

        @manager.register_migration("1.0.0", "1.1.0")
        def _broken(config: Dict[str, Any]) -> Dict[str, Any]:
            raise KeyError("retries")

        result = manager.migrate_configuration(legacy_config, "0.9.0", "1.1.0")

        assert not result.success
        assert result.migrated_config is None
        assert "1.0.0 -> 1.1.0 failed" in result.errors[0]
        assert manager.get_version_history() == []

    def test_migrate_missing_version_assumes_current(self) -> None:
        """Test that an unversioned configuration is stamped as current."""
        migrated = VersionCompatManager().migrate({"global": {}})
        assert migrated["version"] == "1.0.0"

    def test_rollback(self, legacy_config: Dict[str, Any]) -> None:
        """Test undoing the built-in migration."""
        manager = VersionCompatManager()
        upgraded = manager.migrate(legacy_config)

        result = manager.rollback_migration(upgraded, "1.0.0", "0.9.0")

        assert result.success
        assert result.migrated_config["version"] == "0.9.0"
        assert "enableCaching" not in result.migrated_config["global"]
        assert manager.get_version_history()[0].changes[0].startswith("Rolled back")

    def test_rollback_unavailable(self) -> None:
        """Test the error when no registered step can be undone."""
        result = VersionCompatManager().rollback_migration({}, "2.0.0", "1.0.0")
        assert result.errors == ["No rollback available from 2.0.0 to 1.0.0"]


class TestVersionInformation:
    """Tests for compatibility reporting."""

    def test_legacy_compatibility(self) -> None:
        """Test the report for the previous schema version."""
        info = VersionCompatManager().get_version_compatibility("0.9.0")

        assert info.is_supported
        assert not info.is_latest
        assert info.available_upgrades == ["1.0.0"]
        assert "Version 0.9.0 is deprecated. Please upgrade to 1.0.0" in info.deprecation_warnings
        assert len(info.deprecation_warnings) == 2

    def test_current_compatibility(self) -> None:
        """Test the report for the current version."""
        info = VersionCompatManager().get_version_compatibility("1.0.0")

        assert info.is_latest
        assert not info.can_upgrade
        assert info.deprecation_warnings == []

    def test_changelog(self) -> None:
        """Test describing the steps between two versions."""
        changelog = VersionCompatManager().generate_changelog("0.9.0", "1.0.0")
        assert changelog == ["0.9.0 -> 1.0.0: Add new caching and background job configuration options"]
