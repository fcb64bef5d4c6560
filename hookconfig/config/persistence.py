"""
Configuration Persistence Module.

Writes configurations to disk safely and manages their backups:
- Validation before every write.
- Timestamped backups of the file being replaced, with retention pruning.
- Atomic writes through a temporary file and a rename.
- Restore and integrity verification of backups.
- Export to JSON, YAML or environment-variable format.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import yaml
from loguru import logger

from hookconfig.config.errors import ConfigurationError, PersistenceError
from hookconfig.config.loader import read_config_file
from hookconfig.config.utils import clone, flatten, utc_now_iso
from hookconfig.config.validator import ConfigValidator


BACKUP_SUFFIX = ".backup.json"
EXPORT_FORMATS = ("json", "yaml", "env")

# Structure every backup file must have.
BACKUP_ENVELOPE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["metadata", "configuration"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["originalPath", "backupPath", "timestamp", "checksum"],
            "properties": {
                "originalPath": {"type": "string"},
                "backupPath": {"type": "string"},
                "timestamp": {"type": "string"},
                "version": {"type": ["string", "null"]},
                "environment": {"type": ["string", "null"]},
                "reason": {"type": ["string", "null"]},
                "size": {"type": "integer", "minimum": 0},
                "checksum": {"type": "string"},
            },
        },
        "configuration": {"type": "object"},
    },
}


@dataclass
class PersistenceOptions:
    """Tunable behavior of configuration persistence."""

    backup_dir: str | Path = "config/backups"
    max_backups: int = 10
    enable_backup: bool = True
    enable_validation: bool = True
    enable_atomic_writes: bool = True
    file_permissions: int = 0o644
    export_prefix: str = "HOOK_CONFIG_"


@dataclass
class PersistenceResult:
    """Outcome of a save, backup, restore or export."""

    success: bool
    file_path: Optional[Path] = None
    backup_path: Optional[Path] = None
    configuration: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "filePath": str(self.file_path) if self.file_path else None,
            "backupPath": str(self.backup_path) if self.backup_path else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "timestamp": self.timestamp,
        }


@dataclass
class BackupMetadata:
    """Description of one backup file, stored inside it."""

    original_path: str
    backup_path: str
    timestamp: str
    checksum: str
    version: Optional[str] = None
    environment: Optional[str] = None
    reason: Optional[str] = None
    size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupMetadata":
        return cls(
            original_path=data["originalPath"],
            backup_path=data["backupPath"],
            timestamp=data["timestamp"],
            checksum=data["checksum"],
            version=data.get("version"),
            environment=data.get("environment"),
            reason=data.get("reason"),
            size=data.get("size", 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalPath": self.original_path,
            "backupPath": self.backup_path,
            "timestamp": self.timestamp,
            "version": self.version,
            "environment": self.environment,
            "reason": self.reason,
            "size": self.size,
            "checksum": self.checksum,
        }


@dataclass
class BackupVerification:
    """Outcome of checking a backup's structure, checksum and content."""

    is_valid: bool
    backup_path: Path
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Optional[BackupMetadata] = None


def serialize_configuration(config: Dict[str, Any]) -> str:
    """
    Canonical JSON text of a configuration.

    Raises:
        PersistenceError: If the configuration holds values JSON cannot represent.
    """
    try:
        return json.dumps(config, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Configuration is not serializable: {e}") from e


def calculate_checksum(content: str) -> str:
    """32-bit rolling hash of a string, as 8 hex digits."""
    value = 0
    for char in content:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    return format(value, "08x")


class ConfigPersistence:
    """
    Saves, backs up and restores configuration files.

    Attributes:
        options: Persistence behavior.
        validator: Validator run before every write and restore.

    Usage::

        persistence = ConfigPersistence(PersistenceOptions(backup_dir="config/backups"))
        result = persistence.save(config, "config/hooks.production.json", reason="Tune timeouts")
        if not result.success:
            print(result.errors)
    """

    def __init__(
        self,
        options: Optional[PersistenceOptions] = None,
        *,
        validator: Optional[ConfigValidator] = None,
    ) -> None:
        self.options = options or PersistenceOptions()
        self.validator = validator or ConfigValidator()
        self.backup_dir = Path(self.options.backup_dir)
        logger.debug(
            f"ConfigPersistence initialized, backup_dir={self.backup_dir}, "
            f"max_backups={self.options.max_backups}"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(
        self,
        config: Dict[str, Any],
        path: str | Path,
        *,
        reason: Optional[str] = None,
        create_backup: Optional[bool] = None,
    ) -> PersistenceResult:
        """
        Validate and write a configuration, backing up the file it replaces.

        Args:
            config: Configuration to write. Not modified.
            path: Destination file; ``.yaml``/``.yml`` are written as YAML.
            reason: Recorded in the backup metadata.
            create_backup: Override the backup option for this call.

        Returns:
            PersistenceResult holding the written configuration on success.
            On failure the destination file is left untouched.
        """
        path = Path(path)
        result = PersistenceResult(success=False, file_path=path)

        if self.options.enable_validation:
            validation = self.validator.validate_system_configuration(config)
            result.warnings.extend(validation.warning_messages)
            if not validation.is_valid:
                result.errors.extend(validation.error_messages)
                logger.error(f"Refusing to save invalid configuration to {path}")
                return result

        prepared = clone(config)
        metadata = prepared.setdefault("metadata", {})
        metadata["updatedAt"] = utc_now_iso()
        try:
            content = self._render(prepared, path)
        except PersistenceError as e:
            result.errors.append(str(e))
            logger.error(f"Refusing to save to {path}: {e}")
            return result

        backup_enabled = self.options.enable_backup if create_backup is None else create_backup
        if backup_enabled:
            backup = self.create_backup(path, reason=reason or "Before save")
            result.warnings.extend(backup.warnings)
            if not backup.success:
                result.errors.extend(f"Backup failed: {error}" for error in backup.errors)
                return result
            result.backup_path = backup.backup_path

        try:
            self._write(path, content)
        except PersistenceError as e:
            result.errors.append(str(e))
            logger.error(str(e))
            return result

        if backup_enabled:
            self.prune_backups(path)

        result.success = True
        result.configuration = prepared
        logger.info(f"Configuration saved: {path}")
        return result

    def create_backup(self, path: str | Path, reason: Optional[str] = None) -> PersistenceResult:
        """
        Copy the configuration currently at ``path`` into a backup file.

        A missing source file is not an error: the result succeeds with a
        warning and no backup path.
        """
        path = Path(path)
        result = PersistenceResult(success=False, file_path=path)

        if not path.exists():
            result.success = True
            result.warnings.append(f"No existing file at {path}, no backup needed")
            return result

        try:
            configuration = read_config_file(path)
        except ConfigurationError as e:
            result.errors.append(str(e))
            return result

        try:
            canonical = serialize_configuration(configuration)
        except PersistenceError as e:
            result.errors.append(str(e))
            return result

        now = datetime.now(timezone.utc)
        backup_path = self._backup_file_name(path, now)
        metadata_block = configuration.get("metadata")
        metadata = BackupMetadata(
            original_path=str(path),
            backup_path=str(backup_path),
            timestamp=now.isoformat(),
            checksum=calculate_checksum(canonical),
            version=configuration.get("version") if isinstance(configuration.get("version"), str) else None,
            environment=metadata_block.get("environment") if isinstance(metadata_block, dict) else None,
            reason=reason,
            size=len(canonical.encode("utf-8")),
        )

        envelope = {"metadata": metadata.to_dict(), "configuration": configuration}
        try:
            self._write(backup_path, serialize_configuration(envelope) + "\n")
        except PersistenceError as e:
            result.errors.append(str(e))
            return result

        result.success = True
        result.backup_path = backup_path
        logger.info(f"Backup created: {backup_path} ({reason or 'no reason given'})")
        return result

    def restore(self, backup_path: str | Path, target_path: str | Path | None = None) -> PersistenceResult:
        """
        Restore a backup over its original file or over ``target_path``.

        The backup must be structurally sound and its configuration valid.
        The file being replaced is backed up first.
        """
        backup_path = Path(backup_path)
        result = PersistenceResult(success=False)

        try:
            envelope = self.read_backup(backup_path)
        except PersistenceError as e:
            result.errors.append(str(e))
            return result

        configuration = envelope["configuration"]
        if self.options.enable_validation:
            validation = self.validator.validate_system_configuration(configuration)
            result.warnings.extend(validation.warning_messages)
            if not validation.is_valid:
                result.errors.append("Backup configuration is invalid")
                result.errors.extend(validation.error_messages)
                return result

        target = Path(target_path) if target_path else Path(envelope["metadata"]["originalPath"])
        result.file_path = target

        if self.options.enable_backup:
            backup = self.create_backup(target, reason="Before restore operation")
            if not backup.success:
                result.errors.extend(f"Backup failed: {error}" for error in backup.errors)
                return result
            result.backup_path = backup.backup_path

        try:
            self._write(target, self._render(configuration, target))
        except PersistenceError as e:
            result.errors.append(str(e))
            return result

        result.success = True
        result.configuration = clone(configuration)
        logger.info(f"Configuration restored from {backup_path} to {target}")
        return result

    def read_backup(self, backup_path: str | Path) -> Dict[str, Any]:
        """
        Read a backup file and check its structure.

        Raises:
            PersistenceError: If the file is unreadable or malformed.
        """
        backup_path = Path(backup_path)
        try:
            envelope = json.loads(backup_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read backup {backup_path}: {e}") from e

        validator = jsonschema.Draft7Validator(BACKUP_ENVELOPE_SCHEMA)
        problems = sorted(validator.iter_errors(envelope), key=lambda e: list(e.path))
        if problems:
            details = "; ".join(
                f"[{' -> '.join(str(p) for p in error.absolute_path) or '(root)'}] {error.message}"
                for error in problems
            )
            raise PersistenceError(f"Invalid backup file structure: {details}")
        return envelope

    def verify_backup(self, backup_path: str | Path) -> BackupVerification:
        """Check a backup's structure, checksum and content without changing it."""
        backup_path = Path(backup_path)
        verification = BackupVerification(is_valid=False, backup_path=backup_path)

        try:
            envelope = self.read_backup(backup_path)
        except PersistenceError as e:
            verification.errors.append(str(e))
            return verification

        metadata = BackupMetadata.from_dict(envelope["metadata"])
        verification.metadata = metadata

        actual = calculate_checksum(serialize_configuration(envelope["configuration"]))
        if actual != metadata.checksum:
            verification.errors.append("Backup checksum mismatch - file may be corrupted")

        validation = self.validator.validate_system_configuration(envelope["configuration"])
        verification.warnings.extend(validation.warning_messages)
        verification.errors.extend(validation.error_messages)

        verification.is_valid = not verification.errors
        return verification

    def list_backups(self, original_path: str | Path | None = None) -> List[BackupMetadata]:
        """
        Describe the backups in the backup directory, newest first.

        Args:
            original_path: Only list backups of this file.
        """
        if not self.backup_dir.exists():
            return []

        backups = []
        for path in self.backup_dir.glob(f"*{BACKUP_SUFFIX}"):
            try:
                envelope = self.read_backup(path)
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable backup {path.name}: {e}")
                continue
            metadata = BackupMetadata.from_dict(envelope["metadata"])
            if original_path is not None and Path(metadata.original_path) != Path(original_path):
                continue
            metadata.backup_path = str(path)
            backups.append(metadata)

        backups.sort(key=lambda m: (m.timestamp, m.backup_path), reverse=True)
        return backups

    def prune_backups(self, original_path: str | Path | None = None) -> List[Path]:
        """
        Delete the oldest backups beyond the retention limit.

        Args:
            original_path: Only prune backups of this file.

        Returns:
            Paths of deleted backups.
        """
        removed = []
        for metadata in self.list_backups(original_path)[self.options.max_backups:]:
            path = Path(metadata.backup_path)
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete old backup {path}: {e}")
                continue
            removed.append(path)
        if removed:
            logger.info(f"Pruned {len(removed)} old backup(s)")
        return removed

    def render_export(self, config: Dict[str, Any], fmt: str) -> str:
        """
        Render a configuration in an export format.

        Raises:
            ValueError: If the format is not one of EXPORT_FORMATS.
        """
        if fmt == "json":
            return serialize_configuration(config) + "\n"
        if fmt == "yaml":
            return yaml.safe_dump(config, sort_keys=False, default_flow_style=False, allow_unicode=True)
        if fmt == "env":
            lines = []
            for key, value in flatten(config).items():
                name = self.options.export_prefix + key.upper().replace(".", "_")
                text = value if isinstance(value, str) else json.dumps(value)
                lines.append(f"{name}={text}")
            return "\n".join(lines) + "\n"
        raise ValueError(f"Unsupported export format '{fmt}'. Supported: {', '.join(EXPORT_FORMATS)}")

    def export(self, config: Dict[str, Any], fmt: str, output_path: str | Path) -> PersistenceResult:
        """Write a configuration in an export format."""
        output_path = Path(output_path)
        result = PersistenceResult(success=False, file_path=output_path)
        try:
            content = self.render_export(config, fmt)
            self._write(output_path, content)
        except (TypeError, ValueError, PersistenceError) as e:
            result.errors.append(str(e))
            return result
        result.success = True
        logger.info(f"Configuration exported as {fmt}: {output_path}")
        return result

    # ------------------------------------------------------------------
    # Private Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _render(config: Dict[str, Any], path: Path) -> str:
        if path.suffix.lower() in {".yaml", ".yml"}:
            try:
                return yaml.safe_dump(config, sort_keys=False, default_flow_style=False, allow_unicode=True)
            except yaml.YAMLError as e:
                raise PersistenceError(f"Configuration is not serializable: {e}") from e
        return serialize_configuration(config) + "\n"

    def _backup_file_name(self, path: Path, when: datetime) -> Path:
        stamp = when.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        candidate = self.backup_dir / f"{path.stem}_{stamp}{BACKUP_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{path.stem}_{stamp}-{counter}{BACKUP_SUFFIX}"
            counter += 1
        return candidate

    def _write(self, path: Path, content: str) -> None:
        """Write a file, atomically unless atomic writes are disabled."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to create directory {path.parent}: {e}") from e

        if not self.options.enable_atomic_writes:
            try:
                path.write_text(content, encoding="utf-8")
                os.chmod(path, self.options.file_permissions)
            except OSError as e:
                raise PersistenceError(f"Failed to write {path}: {e}") from e
            return

        tmp_path: Optional[Path] = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, self.options.file_permissions)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write {path}: {e}") from e
