"""
Version Compatibility Manager.

Handles configurations written for older schema versions. Migrations are
registered as steps between two versions; the manager finds a path
between any two versions, applies it step by step on a copy of the
configuration, and keeps a bounded history of what was applied.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from loguru import logger

from hookconfig.config.errors import MigrationError
from hookconfig.config.utils import clone, utc_now_iso


# Type alias for migration functions:
# (config_data) -> config_data
MigrationFunc = Callable[[Dict[str, Any]], Dict[str, Any]]

VERSION_FORMAT = re.compile(r"^\d+\.\d+\.\d+$")


@dataclass(frozen=True)
class VersionComparison:
    """Relationship of version ``a`` to version ``b``."""

    is_newer: bool
    is_older: bool
    is_equal: bool
    difference: int


@dataclass(frozen=True)
class Migration:
    """A single step between two schema versions."""

    from_version: str
    to_version: str
    description: str
    migrate: MigrationFunc
    rollback: Optional[MigrationFunc] = None

    @property
    def name(self) -> str:
        return f"{self.from_version} -> {self.to_version}"


@dataclass
class MigrationResult:
    """Outcome of a migration or rollback between two versions."""

    success: bool
    from_version: str
    to_version: str
    migrated_config: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    applied_migrations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "fromVersion": self.from_version,
            "toVersion": self.to_version,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "appliedMigrations": list(self.applied_migrations),
        }


@dataclass
class VersionHistoryEntry:
    """Audit record of one applied migration or rollback step."""

    version: str
    timestamp: str
    changes: List[str]
    migrated_from: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "changes": list(self.changes),
            "migratedFrom": self.migrated_from,
        }


@dataclass
class VersionCompatibility:
    """Support status of a configuration version."""

    is_supported: bool
    is_latest: bool
    can_upgrade: bool
    available_upgrades: List[str] = field(default_factory=list)
    deprecation_warnings: List[str] = field(default_factory=list)


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse ``major.minor.patch`` into integers.

    Missing or non-numeric parts count as 0.
    """
    parts: List[int] = []
    for part in str(version).split(".")[:3]:
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def compare_versions(a: str, b: str) -> VersionComparison:
    """
    Compare two versions part by part.

    ``difference`` is the signed difference of the first part that differs,
    or 0 when the versions are equal.
    """
    for part_a, part_b in zip(parse_version(a), parse_version(b)):
        if part_a != part_b:
            return VersionComparison(
                is_newer=part_a > part_b,
                is_older=part_a < part_b,
                is_equal=False,
                difference=part_a - part_b,
            )
    return VersionComparison(is_newer=False, is_older=False, is_equal=True, difference=0)


class VersionCompatManager:
    """
    Manages version-aware migrations for configurations.

    Migrations are registered as functions that transform a config dict
    from one schema version to another. The built-in migrations cover the
    known history of the hook configuration format.

    Example:
        manager = VersionCompatManager()

        @manager.register_migration("1.0.0", "1.1.0", description="Rename retry setting")
        def migrate_1_0_to_1_1(config):
            hook = config.setdefault("global", {})
            if "retries" in hook:
                hook["retryAttempts"] = hook.pop("retries")
            return config
    """

    # The current expected schema version
    CURRENT_VERSION = "1.0.0"
    SUPPORTED_VERSIONS = ("1.0.0", "0.9.0")
    MAX_HISTORY = 100
    MAX_VERSION_PART = 99

    def __init__(
        self,
        *,
        current_version: Optional[str] = None,
        supported_versions: Optional[Tuple[str, ...]] = None,
        register_builtins: bool = True,
    ) -> None:
        """
        Initialize the version compatibility manager.

        Args:
            current_version: Latest schema version. Defaults to CURRENT_VERSION.
            supported_versions: Versions accepted without a warning.
            register_builtins: Whether to register the built-in migrations.
        """
        self.current_version = current_version or self.CURRENT_VERSION
        self.supported_versions = tuple(supported_versions or self.SUPPORTED_VERSIONS)
        self._migrations: List[Migration] = []
        self._history: Deque[VersionHistoryEntry] = deque(maxlen=self.MAX_HISTORY)
        if register_builtins:
            self._register_builtin_migrations()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_migration(
        self,
        from_version: str,
        to_version: str,
        *,
        description: str = "",
        rollback: Optional[MigrationFunc] = None,
    ) -> Callable[[MigrationFunc], MigrationFunc]:
        """
        Decorator to register a migration function.

        Args:
            from_version: Source schema version (semver string).
            to_version: Target schema version (semver string).
            description: Human-readable summary of the change.
            rollback: Optional inverse transformation.

        Returns:
            Decorator function.
        """

        def decorator(func: MigrationFunc) -> MigrationFunc:
            self.add_migration(Migration(
                from_version=from_version,
                to_version=to_version,
                description=description or (func.__doc__ or "").strip().split("\n")[0],
                migrate=func,
                rollback=rollback,
            ))
            return func

        return decorator

    def add_migration(self, migration: Migration) -> None:
        """Register a migration step."""
        self._migrations.append(migration)
        logger.debug(f"Registered migration: {migration.name}")

    def get_available_migrations(self) -> List[Migration]:
        """All registered migrations, ordered by source version."""
        return sorted(self._migrations, key=lambda m: parse_version(m.from_version))

    # ------------------------------------------------------------------
    # Path Finding
    # ------------------------------------------------------------------

    def get_migration_path(self, from_version: str, to_version: str) -> List[Migration]:
        """
        Find the shortest chain of migrations from one version to another.

        Only steps whose target is not newer than ``to_version`` are used.
        Among equally short chains the one built from earlier registered
        steps wins. Versions already reached are never expanded again, so
        cyclic registrations cannot loop.

        Args:
            from_version: Starting version.
            to_version: Version to reach.

        Returns:
            Ordered list of migrations; empty when the versions are equal.

        Raises:
            MigrationError: If no chain reaches ``to_version``.
        """
        if compare_versions(from_version, to_version).is_equal:
            return []

        candidates = [
            m for m in self._migrations
            if not compare_versions(m.to_version, to_version).is_newer
        ]
        queue: Deque[Tuple[str, List[Migration]]] = deque([(from_version, [])])
        visited = {parse_version(from_version)}

        while queue:
            version, path = queue.popleft()
            for migration in candidates:
                if not compare_versions(migration.from_version, version).is_equal:
                    continue
                next_path = path + [migration]
                if compare_versions(migration.to_version, to_version).is_equal:
                    return next_path
                key = parse_version(migration.to_version)
                if key in visited:
                    continue
                visited.add(key)
                queue.append((migration.to_version, next_path))

        raise MigrationError(f"No migration path found from {from_version} to {to_version}")

    def is_migration_available(self, from_version: str, to_version: str) -> bool:
        """Whether a migration chain exists between two different versions."""
        if compare_versions(from_version, to_version).is_equal:
            return False
        try:
            self.get_migration_path(from_version, to_version)
        except MigrationError:
            return False
        return True

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def migrate_configuration(
        self, config: Dict[str, Any], from_version: str, to_version: str
    ) -> MigrationResult:
        """
        Migrate a configuration between two versions.

        Steps are applied to a copy; ``version`` is updated after each one.
        The first failing step aborts the migration and nothing of the
        partial run is returned.

        Args:
            config: Configuration to migrate. Not modified.
            from_version: Version the configuration is currently at.
            to_version: Version to reach.

        Returns:
            MigrationResult with the migrated copy on success.
        """
        result = MigrationResult(success=False, from_version=from_version, to_version=to_version)
        comparison = compare_versions(from_version, to_version)

        if comparison.is_equal:
            result.success = True
            result.migrated_config = clone(config)
            result.warnings.append("Configuration is already at target version")
            return result

        if comparison.is_newer:
            result.errors.append(f"Cannot migrate to older version: {from_version} -> {to_version}")
            return result

        try:
            path = self.get_migration_path(from_version, to_version)
        except MigrationError as e:
            result.errors.append(str(e))
            return result

        logger.info(f"Migrating configuration from v{from_version} to v{to_version}")
        working = clone(config)
        applied: List[str] = []
        entries: List[VersionHistoryEntry] = []

        for migration in path:
            logger.debug(f"Applying migration: {migration.name}")
            try:
                migrated = migration.migrate(working)
            except Exception as e:
                logger.error(f"Migration {migration.name} failed: {e}")
                result.errors.append(f"Migration {migration.name} failed: {e}")
                return result

            if not isinstance(migrated, dict):
                result.errors.append(
                    f"Migration {migration.name} returned {type(migrated).__name__}, expected a mapping"
                )
                return result

            working = migrated
            working["version"] = migration.to_version
            applied.append(migration.name)
            entries.append(VersionHistoryEntry(
                version=migration.to_version,
                timestamp=utc_now_iso(),
                changes=[migration.description],
                migrated_from=migration.from_version,
            ))

        self._history.extend(entries)
        result.success = True
        result.migrated_config = working
        result.applied_migrations = applied
        logger.info(f"Migration complete: {', '.join(applied)}")
        return result

    def migrate(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Bring a configuration to the current version.

        A configuration without a ``version`` is assumed to be current.

        Raises:
            MigrationError: If the migration fails.
        """
        version = config.get("version")
        if version is None:
            logger.debug("No version found, assuming current version.")
            migrated = clone(config)
            migrated["version"] = self.current_version
            return migrated

        result = self.migrate_configuration(config, version, self.current_version)
        if not result.success:
            raise MigrationError("; ".join(result.errors))
        return result.migrated_config

    def rollback_migration(
        self, config: Dict[str, Any], from_version: str, to_version: str
    ) -> MigrationResult:
        """
        Undo a migration step, going from ``from_version`` back to ``to_version``.

        Only possible through a registered migration ``to_version -> from_version``
        that declares a rollback.
        """
        result = MigrationResult(success=False, from_version=from_version, to_version=to_version)
        migration = next(
            (
                m for m in self._migrations
                if m.rollback is not None
                and compare_versions(m.from_version, to_version).is_equal
                and compare_versions(m.to_version, from_version).is_equal
            ),
            None,
        )
        if migration is None:
            result.errors.append(f"No rollback available from {from_version} to {to_version}")
            return result

        try:
            rolled_back = migration.rollback(clone(config))
        except Exception as e:
            logger.error(f"Rollback {migration.name} failed: {e}")
            result.errors.append(f"Rollback {from_version} -> {to_version} failed: {e}")
            return result

        if not isinstance(rolled_back, dict):
            result.errors.append(f"Rollback {from_version} -> {to_version} did not return a mapping")
            return result

        rolled_back["version"] = to_version
        self._history.append(VersionHistoryEntry(
            version=to_version,
            timestamp=utc_now_iso(),
            changes=[f"Rolled back: {migration.description}"],
            migrated_from=from_version,
        ))
        result.success = True
        result.migrated_config = rolled_back
        result.applied_migrations = [f"{from_version} -> {to_version}"]
        logger.info(f"Rolled back configuration from v{from_version} to v{to_version}")
        return result

    # ------------------------------------------------------------------
    # Version Information
    # ------------------------------------------------------------------

    def get_latest_version(self) -> str:
        return self.current_version

    def is_version_supported(self, version: str) -> bool:
        return version in self.supported_versions

    def get_version_compatibility(self, version: str) -> VersionCompatibility:
        """Describe how well a version is supported and where it can go."""
        latest = self.current_version
        upgrades = sorted(
            {
                m.to_version for m in self._migrations
                if compare_versions(m.to_version, version).is_newer
                and self.is_migration_available(version, m.to_version)
            },
            key=parse_version,
        )
        warnings: List[str] = []
        if compare_versions(version, latest).is_older:
            warnings.append(f"Version {version} is deprecated. Please upgrade to {latest}")
        if version == "0.9.0":
            warnings.append("Version 0.9.0 lacks important caching and background job features")

        return VersionCompatibility(
            is_supported=self.is_version_supported(version),
            is_latest=version == latest,
            can_upgrade=bool(upgrades),
            available_upgrades=upgrades,
            deprecation_warnings=warnings,
        )

    def validate_version_format(self, version: str) -> List[str]:
        """
        Check that a version is ``x.y.z`` with every part at most 99.

        Returns:
            List of problems, empty when the version is well formed.
        """
        if not isinstance(version, str) or not VERSION_FORMAT.match(version):
            return [f"Invalid version format: {version} (expected x.y.z)"]
        errors = []
        for name, part in zip(("Major", "Minor", "Patch"), parse_version(version)):
            if part > self.MAX_VERSION_PART:
                errors.append(f"{name} version part {part} exceeds {self.MAX_VERSION_PART}")
        return errors

    def generate_changelog(self, from_version: str, to_version: str) -> List[str]:
        """Describe every migration step between two versions."""
        try:
            path = self.get_migration_path(from_version, to_version)
        except MigrationError:
            return []
        return [f"{m.name}: {m.description}" for m in path]

    def get_version_history(self, limit: int = 50) -> List[VersionHistoryEntry]:
        """Most recent history entries, newest first."""
        return list(reversed(self._history))[:limit]

    # ------------------------------------------------------------------
    # Built-in Migrations
    # ------------------------------------------------------------------

    def _register_builtin_migrations(self) -> None:
        """
        Register built-in migrations for known version transitions.

        Add new migrations here as the schema evolves.
        """

        def _rollback_0_9_from_1_0(config: Dict[str, Any]) -> Dict[str, Any]:
            hook = config.get("global")
            if isinstance(hook, dict):
                for key in _CACHING_AND_JOB_DEFAULTS:
                    hook.pop(key, None)
            return config

        @self.register_migration(
            "0.9.0",
            "1.0.0",
            description="Add new caching and background job configuration options",
            rollback=_rollback_0_9_from_1_0,
        )
        def _migrate_0_9_to_1_0(config: Dict[str, Any]) -> Dict[str, Any]:
            """
            Migrate from schema v0.9.0 to v1.0.0.

            Changes:
            - Added caching settings to the global section.
            - Added background job settings to the global section.
            """
            hook = config.setdefault("global", {})
            for key, default in _CACHING_AND_JOB_DEFAULTS.items():
                hook.setdefault(key, default)
            return config


_CACHING_AND_JOB_DEFAULTS: Dict[str, Any] = {
    "enableCaching": True,
    "cacheExpirationMs": 300000,
    "enableBackgroundJobs": True,
    "backgroundJobTimeout": 30000,
}
