"""
Runtime Configuration Update Manager.

Applies partial or full updates to the live configuration. Every update
is validated as a whole before anything is written; the previous state
is kept as a rollback point, the new state is persisted, and a change
event is published once the new configuration is live.

The manager is not thread-safe. Two overlapping updates can both read
the same current configuration and the later write wins.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from hookconfig.config.errors import ConfigurationError
from hookconfig.config.events import ChangeEventBus, ConfigurationChangeEvent, UpdateType
from hookconfig.config.loader import ConfigLoader, LoadResult
from hookconfig.config.model import SystemConfiguration, default_content_type_configuration
from hookconfig.config.persistence import ConfigPersistence
from hookconfig.config.utils import clone, deep_merge, utc_now_iso
from hookconfig.config.validator import (
    CONTENT_TYPE_NAME_PATTERN,
    FEATURE_FLAG_NAME_PATTERN,
    INVALID_CONTENT_TYPE_NAME,
    INVALID_FEATURE_FLAG_NAME,
    INVALID_TYPE,
    ConfigValidator,
    ValidationError,
    ValidationResult,
)


@dataclass
class UpdateResult:
    """Outcome of an update or rollback."""

    success: bool
    update_id: str
    type: UpdateType
    configuration: Optional[Dict[str, Any]] = None
    validation: Optional[ValidationResult] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rollback_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "updateId": self.update_id,
            "type": self.type.value,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "validation": self.validation.to_dict() if self.validation else None,
            "rollbackAvailable": self.rollback_available,
        }


@dataclass
class RollbackPoint:
    """Snapshot of the configuration as it was before an update."""

    update_id: str
    configuration: Dict[str, Any]
    timestamp: str
    description: str = ""


@dataclass
class UpdateHistoryEntry:
    """Audit record of one attempted update or rollback."""

    update_id: str
    type: UpdateType
    timestamp: str
    success: bool
    path: Optional[str] = None
    author: Optional[str] = None
    reason: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    rolled_back: bool = False
    rollback_of: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updateId": self.update_id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "success": self.success,
            "path": self.path,
            "author": self.author,
            "reason": self.reason,
            "errors": list(self.errors),
            "rolledBack": self.rolled_back,
            "rollbackOf": self.rollback_of,
        }


class UpdateManager:
    """
    Validated runtime updates with rollback and change notification.

    Attributes:
        persistence: Writes the configuration after each update.
        config_path: File holding the live configuration.
        validator: Validates every candidate configuration.
        loader: Used by initialize() and reload_configuration().
        event_bus: Channel receiving a ConfigurationChangeEvent per change.

    Usage::

        manager = UpdateManager(persistence, "config/hooks.json", loader=loader)
        manager.initialize("production")
        result = manager.update_global_configuration({"retryAttempts": 3}, author="ops")
        if result.success:
            manager.rollback(result.update_id)
    """

    MAX_ROLLBACK_POINTS = 20
    MAX_HISTORY = 1000

    def __init__(
        self,
        persistence: ConfigPersistence,
        config_path: str | Path,
        *,
        validator: Optional[ConfigValidator] = None,
        loader: Optional[ConfigLoader] = None,
        event_bus: Optional[ChangeEventBus] = None,
        configuration: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Args:
            persistence: Persistence used to write updates.
            config_path: Destination of the live configuration.
            validator: Validator for candidates. Defaults to the persistence validator.
            loader: Loader used to obtain the initial configuration.
            event_bus: Change channel. A private one is created if omitted.
            configuration: Initial configuration, instead of calling initialize().
        """
        self.persistence = persistence
        self.config_path = Path(config_path)
        self.validator = validator or persistence.validator
        self.loader = loader
        self.event_bus = event_bus or ChangeEventBus()
        self._current: Optional[SystemConfiguration] = (
            SystemConfiguration.from_dict(configuration) if configuration is not None else None
        )
        self._environment: Optional[str] = None
        self._rollback_points: Deque[RollbackPoint] = deque(maxlen=self.MAX_ROLLBACK_POINTS)
        self._history: Deque[UpdateHistoryEntry] = deque(maxlen=self.MAX_HISTORY)
        logger.debug(f"UpdateManager initialized, config_path={self.config_path}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._current is not None

    def initialize(self, environment: Optional[str] = None) -> LoadResult:
        """
        Load the live configuration through the loader.

        Raises:
            ConfigurationError: If no loader was given or loading fails.
        """
        if self.loader is None:
            raise ConfigurationError("UpdateManager has no loader to initialize from")
        result = self.loader.load(environment)
        if not result.success:
            raise ConfigurationError(
                f"Failed to initialize configuration: {'; '.join(result.errors)}"
            )
        self._environment = environment
        self._current = SystemConfiguration.from_dict(result.configuration)
        logger.info(f"UpdateManager initialized from {result.source.value} source")
        return result

    def reload_configuration(self) -> LoadResult:
        """Re-read the live configuration, bypassing the loader cache."""
        if self.loader is None:
            raise ConfigurationError("UpdateManager has no loader to reload from")
        result = self.loader.reload(self._environment)
        if result.success:
            self._current = SystemConfiguration.from_dict(result.configuration)
            logger.info("Configuration reloaded")
        return result

    def get_current_configuration(self) -> Dict[str, Any]:
        """
        Copy of the live configuration.

        Raises:
            ConfigurationError: If the manager holds no configuration yet.
        """
        if self._current is None:
            raise ConfigurationError("Configuration not initialized. Call initialize() first.")
        return self._current.to_dict()

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(
        self,
        update_type: UpdateType | str,
        data: Dict[str, Any],
        *,
        path: Optional[str] = None,
        reason: Optional[str] = None,
        author: Optional[str] = None,
        validate_only: bool = False,
        skip_backup: bool = False,
    ) -> UpdateResult:
        """
        Apply an update to the live configuration.

        Args:
            update_type: Section targeted by the update.
            data: Patch for the section, or a whole configuration for ``full``.
            path: Content type name, required for ``contentType`` updates.
            reason: Why the change is made; recorded in history and events.
            author: Who makes the change.
            validate_only: Validate without saving.
            skip_backup: Do not record a rollback point.

        Returns:
            UpdateResult. On failure the live and stored configuration are unchanged.
        """
        update_type = UpdateType(update_type)
        update_id = self._new_update_id()
        result = UpdateResult(success=False, update_id=update_id, type=update_type)
        current = self.get_current_configuration()

        try:
            candidate = self._apply_patch(current, update_type, data, path, author)
        except ConfigurationError as e:
            result.errors.append(str(e))
            self._record(result, path, author, reason)
            return result

        validation = self.validator.validate_system_configuration(candidate)
        self._check_update_specific(update_type, data, path, validation)
        result.validation = validation
        result.warnings.extend(validation.warning_messages)
        if not validation.is_valid:
            result.errors.extend(validation.error_messages)
            logger.warning(f"Update {update_id} rejected: {len(validation.errors)} validation error(s)")
            self._record(result, path, author, reason)
            return result

        if validate_only:
            result.success = True
            result.configuration = candidate
            result.warnings.append("Validation only - configuration not saved")
            return result

        saved = self.persistence.save(
            candidate, self.config_path, reason=reason or f"{update_type.value} update {update_id}"
        )
        if not saved.success:
            result.errors.extend(saved.errors)
            logger.error(f"Update {update_id} failed to persist")
            self._record(result, path, author, reason)
            return result

        if not skip_backup:
            self._rollback_points.append(RollbackPoint(
                update_id=update_id,
                configuration=current,
                timestamp=utc_now_iso(),
                description=reason or f"Before {update_type.value} update",
            ))

        self._current = SystemConfiguration.from_dict(saved.configuration)
        result.success = True
        result.configuration = clone(saved.configuration)
        result.rollback_available = not skip_backup

        self.event_bus.publish(ConfigurationChangeEvent(
            update_id=update_id,
            type=update_type,
            timestamp=utc_now_iso(),
            old_value=self._section_value(current, update_type, path),
            new_value=self._section_value(saved.configuration, update_type, path),
            path=path,
            author=author,
            reason=reason,
        ))
        self._record(result, path, author, reason)
        logger.info(f"Update {update_id} applied ({update_type.value}{f' {path}' if path else ''})")
        return result

    def update_global_configuration(self, data: Dict[str, Any], **kwargs: Any) -> UpdateResult:
        return self.update(UpdateType.GLOBAL, data, **kwargs)

    def update_factory_configuration(self, data: Dict[str, Any], **kwargs: Any) -> UpdateResult:
        return self.update(UpdateType.FACTORY, data, **kwargs)

    def update_content_type_configuration(
        self, content_type: str, data: Dict[str, Any], **kwargs: Any
    ) -> UpdateResult:
        return self.update(UpdateType.CONTENT_TYPE, data, path=content_type, **kwargs)

    def update_feature_flags(self, flags: Dict[str, Any], **kwargs: Any) -> UpdateResult:
        return self.update(UpdateType.FEATURE_FLAG, flags, **kwargs)

    def update_full_configuration(self, configuration: Dict[str, Any], **kwargs: Any) -> UpdateResult:
        return self.update(UpdateType.FULL, configuration, **kwargs)

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback(
        self, update_id: str, *, reason: Optional[str] = None, author: Optional[str] = None
    ) -> UpdateResult:
        """
        Restore the configuration as it was before an update.

        Args:
            update_id: Id of the update to undo.
            reason: Why the rollback is made.
            author: Who makes the rollback.

        Returns:
            UpdateResult of the rollback itself.
        """
        rollback_id = self._new_update_id()
        result = UpdateResult(success=False, update_id=rollback_id, type=UpdateType.FULL)

        point = next((p for p in self._rollback_points if p.update_id == update_id), None)
        if point is None:
            result.errors.append(f"No rollback point found for update: {update_id}")
            return result

        validation = self.validator.validate_system_configuration(point.configuration)
        result.validation = validation
        if not validation.is_valid:
            result.errors.append("Rollback configuration is invalid")
            result.errors.extend(validation.error_messages)
            self._record(result, None, author, reason, rollback_of=update_id)
            return result

        previous = self.get_current_configuration()
        saved = self.persistence.save(
            point.configuration, self.config_path, reason=reason or f"Rollback of update {update_id}"
        )
        if not saved.success:
            result.errors.extend(saved.errors)
            self._record(result, None, author, reason, rollback_of=update_id)
            return result

        self._current = SystemConfiguration.from_dict(saved.configuration)
        self._rollback_points.remove(point)
        for entry in self._history:
            if entry.update_id == update_id:
                entry.rolled_back = True

        result.success = True
        result.configuration = clone(saved.configuration)
        self.event_bus.publish(ConfigurationChangeEvent(
            update_id=rollback_id,
            type=UpdateType.FULL,
            timestamp=utc_now_iso(),
            old_value=previous,
            new_value=clone(saved.configuration),
            author=author,
            reason=reason or f"Rollback of update {update_id}",
            is_rollback=True,
        ))
        self._record(result, None, author, reason, rollback_of=update_id)
        logger.info(f"Update {update_id} rolled back")
        return result

    def get_update_history(self, limit: int = 50) -> List[UpdateHistoryEntry]:
        """Most recent audit entries, newest first."""
        return list(reversed(self._history))[:limit]

    def get_available_rollback_points(self) -> List[RollbackPoint]:
        """Rollback points still held, newest first."""
        return list(reversed(self._rollback_points))

    # ------------------------------------------------------------------
    # Private Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_update_id() -> str:
        return f"update_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    @staticmethod
    def _apply_patch(
        current: Dict[str, Any],
        update_type: UpdateType,
        data: Any,
        path: Optional[str],
        author: Optional[str],
    ) -> Dict[str, Any]:
        """Build the candidate configuration. ``current`` is not modified."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"Update data must be a mapping, got {type(data).__name__}")

        candidate = clone(current)
        if update_type is UpdateType.GLOBAL:
            candidate["global"] = deep_merge(candidate.get("global", {}), data)
        elif update_type is UpdateType.FACTORY:
            candidate["factory"] = deep_merge(candidate.get("factory", {}), data)
        elif update_type is UpdateType.CONTENT_TYPE:
            if not path:
                raise ConfigurationError("Content type updates require a content type path")
            content_types = candidate.setdefault("contentTypes", {})
            existing = content_types.get(path) or default_content_type_configuration()
            content_types[path] = deep_merge(existing, data)
        elif update_type is UpdateType.FEATURE_FLAG:
            candidate["featureFlags"] = {**candidate.get("featureFlags", {}), **clone(data)}
        else:
            candidate = clone(data)
            metadata = candidate.setdefault("metadata", {})
            previous = current.get("metadata", {})
            if isinstance(metadata, dict):
                for key in ("createdAt", "environment"):
                    if key in previous:
                        metadata.setdefault(key, previous[key])

        metadata = candidate.setdefault("metadata", {})
        if isinstance(metadata, dict):
            metadata["updatedAt"] = utc_now_iso()
            if author:
                metadata["updatedBy"] = author
        return candidate

    @staticmethod
    def _check_update_specific(
        update_type: UpdateType, data: Dict[str, Any], path: Optional[str], validation: ValidationResult
    ) -> None:
        if update_type is UpdateType.CONTENT_TYPE and path and not CONTENT_TYPE_NAME_PATTERN.match(path):
            validation.errors.append(ValidationError(
                field="contentType",
                message=(
                    f"Invalid content type name '{path}': must start with a lowercase letter "
                    "and contain only lowercase letters, digits and hyphens"
                ),
                code=INVALID_CONTENT_TYPE_NAME,
                value=path,
            ))

        if update_type is UpdateType.FEATURE_FLAG:
            for name, value in data.items():
                if not FEATURE_FLAG_NAME_PATTERN.match(str(name)):
                    validation.errors.append(ValidationError(
                        field=f"featureFlags.{name}",
                        message=f"Invalid feature flag name '{name}': must be camelCase",
                        code=INVALID_FEATURE_FLAG_NAME,
                        value=name,
                    ))
                if not isinstance(value, bool):
                    validation.errors.append(ValidationError(
                        field=f"featureFlags.{name}",
                        message=f"Feature flag '{name}' must be a boolean",
                        code=INVALID_TYPE,
                        value=value,
                        expected_type="boolean",
                    ))

    @staticmethod
    def _section_value(config: Dict[str, Any], update_type: UpdateType, path: Optional[str]) -> Any:
        if update_type is UpdateType.GLOBAL:
            return clone(config.get("global"))
        if update_type is UpdateType.FACTORY:
            return clone(config.get("factory"))
        if update_type is UpdateType.CONTENT_TYPE:
            return clone(config.get("contentTypes", {}).get(path))
        if update_type is UpdateType.FEATURE_FLAG:
            return clone(config.get("featureFlags"))
        return clone(config)

    def _record(
        self,
        result: UpdateResult,
        path: Optional[str],
        author: Optional[str],
        reason: Optional[str],
        rollback_of: Optional[str] = None,
    ) -> None:
        self._history.append(UpdateHistoryEntry(
            update_id=result.update_id,
            type=result.type,
            timestamp=utc_now_iso(),
            success=result.success,
            path=path,
            author=author,
            reason=reason,
            errors=list(result.errors),
            rollback_of=rollback_of,
        ))
