"""
Tests for runtime updates, rollback and change events.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml

from hookconfig.config.errors import ConfigurationError
from hookconfig.config.events import ChangeEventBus, ConfigurationChangeEvent, UpdateType
from hookconfig.config.loader import ConfigLoader
from hookconfig.config.persistence import ConfigPersistence
from hookconfig.config.update_manager import UpdateManager
from hookconfig.config.validator import (
    INVALID_CONTENT_TYPE_NAME,
    INVALID_FEATURE_FLAG_NAME,
    INVALID_TYPE,
    VALUE_TOO_LARGE,
    VALUE_TOO_SMALL,
)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "hooks.json"


@pytest.fixture
def events() -> List[ConfigurationChangeEvent]:
    return []


@pytest.fixture
def manager(
    persistence: ConfigPersistence,
    config_path: Path,
    default_config: Dict[str, Any],
    events: List[ConfigurationChangeEvent],
) -> UpdateManager:
    """Create a manager holding the default configuration, recording events."""
    bus = ChangeEventBus()
    bus.subscribe(events.append)
    return UpdateManager(persistence, config_path, event_bus=bus, configuration=default_config)


def stored(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Tests for initialization and reload."""

    def test_not_initialized(self, persistence: ConfigPersistence, config_path: Path) -> None:
        """Test that reads before initialization raise."""
        manager = UpdateManager(persistence, config_path)

        assert not manager.is_initialized
        with pytest.raises(ConfigurationError, match="Configuration not initialized"):
            manager.get_current_configuration()
        with pytest.raises(ConfigurationError, match="no loader"):
            manager.initialize()

    def test_initialize_from_loader(
        self, persistence: ConfigPersistence, config_path: Path, loader: ConfigLoader
    ) -> None:
        """Test initializing from the loader's winning source."""
        manager = UpdateManager(persistence, config_path, loader=loader)
        result = manager.initialize("staging")

        assert result.success
        assert manager.get_current_configuration()["metadata"]["environment"] == "staging"

    def test_yaml_dates_survive_later_updates(
        self, persistence: ConfigPersistence, config_dir: Path, loader: ConfigLoader
    ) -> None:
        """Test that a YAML file with unquoted dates can be updated and backed up."""
        source = config_dir / "hooks.yaml"
        source.write_text(
            "contentTypes:\n  team:\n    customConfig:\n      seasonStart: 2024-08-01\n",
            encoding="utf-8",
        )
        manager = UpdateManager(persistence, source, loader=loader)
        manager.initialize("staging")

        result = manager.update_global_configuration({"retryAttempts": 3})

        assert result.success, result.errors
        assert result.rollback_available
        assert len(persistence.list_backups(source)) == 1
        stored_yaml = yaml.safe_load(source.read_text(encoding="utf-8"))
        assert stored_yaml["contentTypes"]["team"]["customConfig"]["seasonStart"] == "2024-08-01"

    def test_failed_save_leaves_no_rollback_point(
        self, manager: UpdateManager, config_path: Path, default_config: Dict[str, Any]
    ) -> None:
        """Test that an update which cannot be stored records no rollback point."""
        result = manager.update_content_type_configuration(
            "team", {"customConfig": {"seasonStart": date(2024, 8, 1)}}
        )

        assert not result.success
        assert "not serializable" in result.errors[0]
        assert manager.get_available_rollback_points() == []
        assert "team" not in manager.get_current_configuration()["contentTypes"]
        assert not config_path.exists()

    def test_reload_picks_up_file(
        self, persistence: ConfigPersistence, config_dir: Path, loader: ConfigLoader
    ) -> None:
        """Test that reload re-reads the stored configuration."""
        manager = UpdateManager(persistence, config_dir / "hooks.json", loader=loader)
        manager.initialize("staging")
        (config_dir / "hooks.json").write_text(
            json.dumps({"global": {"retryAttempts": 8}}), encoding="utf-8"
        )

        manager.reload_configuration()

        assert manager.get_current_configuration()["global"]["retryAttempts"] == 8


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestUpdates:
    """Tests for section updates."""

    def test_global_update(
        self, manager: UpdateManager, config_path: Path, events: List[ConfigurationChangeEvent]
    ) -> None:
        """Test a valid global update is applied, stored and announced."""
        result = manager.update_global_configuration({"retryAttempts": 4}, author="ops", reason="Flaky upstream")

        assert result.success
        assert result.rollback_available
        assert result.update_id.startswith("update_")
        assert manager.get_current_configuration()["global"]["retryAttempts"] == 4
        assert stored(config_path)["global"]["retryAttempts"] == 4
        assert stored(config_path)["metadata"]["updatedBy"] == "ops"

        assert len(events) == 1
        event = events[0]
        assert event.type is UpdateType.GLOBAL
        assert event.old_value["retryAttempts"] == 2
        assert event.new_value["retryAttempts"] == 4
        assert event.reason == "Flaky upstream"
        assert not event.is_rollback

    def test_invalid_update_changes_nothing(
        self,
        manager: UpdateManager,
        config_path: Path,
        default_config: Dict[str, Any],
        events: List[ConfigurationChangeEvent],
    ) -> None:
        """Test that a rejected update leaves live state, storage and subscribers untouched."""
        result = manager.update_global_configuration({"maxHookExecutionTime": 10000})

        assert not result.success
        assert result.validation.has_error(VALUE_TOO_LARGE)
        assert manager.get_current_configuration()["global"] == default_config["global"]
        assert not config_path.exists()
        assert events == []
        assert manager.get_available_rollback_points() == []
        assert manager.get_update_history()[0].success is False

    def test_rejected_update_leaves_stored_file_byte_identical(
        self,
        manager: UpdateManager,
        config_path: Path,
        events: List[ConfigurationChangeEvent],
    ) -> None:
        """Test that an execution time below the minimum is refused without touching storage."""
        assert manager.update_global_configuration({"retryAttempts": 3}).success
        before = config_path.read_bytes()
        live_before = manager.get_current_configuration()
        points_before = len(manager.get_available_rollback_points())

        result = manager.update_global_configuration({"maxHookExecutionTime": 5})

        assert not result.success
        assert result.validation.has_error(VALUE_TOO_SMALL)
        assert config_path.read_bytes() == before
        assert manager.get_current_configuration() == live_before
        assert len(manager.get_available_rollback_points()) == points_before
        assert len(events) == 1

    def test_validate_only(self, manager: UpdateManager, config_path: Path) -> None:
        """Test that validate_only returns the candidate without saving it."""
        result = manager.update_factory_configuration({"maxCacheSize": 200}, validate_only=True)

        assert result.success
        assert result.configuration["factory"]["maxCacheSize"] == 200
        assert "Validation only - configuration not saved" in result.warnings
        assert manager.get_current_configuration()["factory"]["maxCacheSize"] == 50
        assert not config_path.exists()
        assert manager.get_update_history() == []

    def test_new_content_type_starts_from_defaults(self, manager: UpdateManager) -> None:
        """Test adding a content type with a partial patch."""
        result = manager.update_content_type_configuration(
            "blog-post", {"hooks": {"afterDelete": True}}
        )

        assert result.success
        blog = manager.get_current_configuration()["contentTypes"]["blog-post"]
        assert blog["enabled"] is True
        assert blog["hooks"]["afterDelete"] is True
        assert blog["hooks"]["beforeCreate"] is True

    def test_invalid_content_type_name(self, manager: UpdateManager) -> None:
        """Test that content type names must be lowercase kebab-case."""
        result = manager.update_content_type_configuration("BlogPost", {"enabled": True})

        assert not result.success
        assert result.validation.has_error(INVALID_CONTENT_TYPE_NAME)

    def test_content_type_names_checked_per_update(self, manager: UpdateManager) -> None:
        """Test that a kebab-case name is accepted and a punctuated one refused."""
        accepted = manager.update_content_type_configuration("team", {"enabled": True})
        refused = manager.update_content_type_configuration("Saison!", {"enabled": True})

        assert accepted.success
        assert not refused.success
        assert refused.validation.has_error(INVALID_CONTENT_TYPE_NAME)
        assert list(manager.get_current_configuration()["contentTypes"]) == ["team"]

    def test_content_type_update_requires_path(self, manager: UpdateManager) -> None:
        """Test that a content type update without a name fails."""
        result = manager.update(UpdateType.CONTENT_TYPE, {"enabled": False})

        assert not result.success
        assert result.errors == ["Content type updates require a content type path"]

    def test_feature_flags(self, manager: UpdateManager) -> None:
        """Test flag updates and their name and type checks."""
        assert manager.update_feature_flags({"enableHookProfiling": True}).success

        bad_name = manager.update_feature_flags({"EnableThing": True})
        assert bad_name.validation.has_error(INVALID_FEATURE_FLAG_NAME)

        bad_value = manager.update_feature_flags({"enableHookChaining": "yes"})
        assert bad_value.validation.has_error(INVALID_TYPE)

    def test_full_update_keeps_creation_metadata(
        self, manager: UpdateManager, default_config: Dict[str, Any]
    ) -> None:
        """Test that a full replacement keeps createdAt and environment."""
        replacement = {key: value for key, value in default_config.items() if key != "metadata"}
        replacement["global"] = {**replacement["global"], "logLevel": "error"}

        result = manager.update_full_configuration(replacement)

        assert result.success
        current = manager.get_current_configuration()
        assert current["global"]["logLevel"] == "error"
        assert current["metadata"]["createdAt"] == default_config["metadata"]["createdAt"]
        assert current["metadata"]["environment"] == "development"

    def test_failing_subscriber_does_not_fail_update(
        self, manager: UpdateManager, events: List[ConfigurationChangeEvent]
    ) -> None:
        """Test that a raising subscriber is isolated from the update."""
        def broken(event: ConfigurationChangeEvent) -> None:
            raise RuntimeError("subscriber bug")

        manager.event_bus.subscribe(broken)
        result = manager.update_global_configuration({"retryAttempts": 3})

        assert result.success
        assert len(events) == 1


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


class TestRollback:
    """Tests for rolling back updates."""

    def test_rollback_restores_previous_state(
        self, manager: UpdateManager, config_path: Path, events: List[ConfigurationChangeEvent]
    ) -> None:
        """Test that rollback restores, stores and announces the earlier state."""
        update = manager.update_global_configuration({"logLevel": "error"})

        result = manager.rollback(update.update_id, author="ops")

        assert result.success
        assert manager.get_current_configuration()["global"]["logLevel"] == "warn"
        assert stored(config_path)["global"]["logLevel"] == "warn"
        assert events[-1].is_rollback
        assert manager.get_available_rollback_points() == []

        history = manager.get_update_history()
        assert history[0].rollback_of == update.update_id
        assert history[1].rolled_back

    def test_unknown_rollback(self, manager: UpdateManager) -> None:
        """Test the error for an unknown update id."""
        result = manager.rollback("update_0_deadbeef")
        assert result.errors == ["No rollback point found for update: update_0_deadbeef"]

    def test_rollback_points_capped(self, manager: UpdateManager) -> None:
        """Test that only the newest twenty rollback points are kept."""
        ids = [
            manager.update_global_configuration({"retryAttempts": attempt % 10}).update_id
            for attempt in range(25)
        ]

        points = manager.get_available_rollback_points()
        assert len(points) == 20
        assert points[0].update_id == ids[-1]
        assert not manager.rollback(ids[0]).success
        assert manager.rollback(ids[5]).success

    def test_skip_backup(self, manager: UpdateManager) -> None:
        """Test that skip_backup records no rollback point."""
        result = manager.update_global_configuration({"retryAttempts": 1}, skip_backup=True)

        assert result.success
        assert not result.rollback_available
        assert not manager.rollback(result.update_id).success


# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


class TestChangeEventBus:
    """Tests for the publish/subscribe channel."""

    def test_subscribe_and_unsubscribe(self) -> None:
        """Test delivery counts across subscription changes."""
        bus = ChangeEventBus()
        received: List[str] = []
        unsubscribe = bus.subscribe(lambda event: received.append(event.update_id))
        event = ConfigurationChangeEvent(
            update_id="update_1_abc", type=UpdateType.FULL, timestamp="now", old_value={}, new_value={}
        )

        assert bus.publish(event) == 1
        unsubscribe()
        assert bus.subscriber_count == 0
        assert bus.publish(event) == 0
        assert received == ["update_1_abc"]
        assert event.to_dict()["type"] == "full"
