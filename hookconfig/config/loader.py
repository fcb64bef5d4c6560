"""
Configuration Loader Module.

Resolves the effective configuration for an environment from several
sources, in order of precedence:
- Configuration files (JSON or YAML) in the config directory.
- A configuration embedded by the host application.
- Environment variables under a common prefix.
- Built-in defaults.

Every candidate is merged with the defaults, migrated to the current
version, validated, and finally given its environment-specific overrides.
Results are cached per environment for a configurable time.
"""

from __future__ import annotations

import json
import math
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml
from loguru import logger

from hookconfig.config.errors import ConfigurationError
from hookconfig.config.model import build_default_configuration
from hookconfig.config.schema_registry import (
    CONTENT_TYPE_SECTION,
    FACTORY_SECTION,
    FEATURE_FLAGS_SECTION,
    GLOBAL_SECTION,
    FieldSpec,
)
from hookconfig.config.utils import clone, set_path, split_path, utc_now_iso
from hookconfig.config.validator import SYSTEM_SECTIONS, ConfigValidator, ValidationResult
from hookconfig.config.version_compat import MigrationResult, VersionCompatManager


SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")
METADATA_KEYS = ("createdAt", "updatedAt", "environment", "updatedBy", "deploymentId")

# (environment) -> configuration or None
EmbeddedProvider = Callable[[str], Optional[Dict[str, Any]]]


class ConfigYamlLoader(yaml.SafeLoader):
    """SafeLoader that keeps unquoted dates and timestamps as strings."""


ConfigYamlLoader.add_constructor("tag:yaml.org,2002:timestamp", yaml.SafeLoader.construct_yaml_str)


class ConfigSource(str, Enum):
    """Where a loaded configuration came from."""

    FILE = "file"
    EMBEDDED = "embedded"
    ENVIRONMENT = "environment"
    DEFAULT = "default"


@dataclass
class LoaderOptions:
    """Tunable behavior of the configuration loader."""

    base_name: str = "hooks"
    enable_caching: bool = True
    cache_expiration_sec: float = 300.0
    enable_validation: bool = True
    enable_migration: bool = True
    environment_prefix: str = "HOOK_CONFIG_"
    fallback_to_defaults: bool = True


@dataclass
class LoadResult:
    """Outcome of loading a configuration from one source or from all of them."""

    success: bool
    source: Optional[ConfigSource] = None
    configuration: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    migration: Optional[MigrationResult] = None
    file_path: Optional[Path] = None
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "source": self.source.value if self.source else None,
            "configuration": clone(self.configuration),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "validation": self.validation.to_dict() if self.validation else None,
            "migration": self.migration.to_dict() if self.migration else None,
            "filePath": str(self.file_path) if self.file_path else None,
            "fromCache": self.from_cache,
        }


@dataclass
class CacheEntry:
    configuration: Dict[str, Any]
    source: ConfigSource
    loaded_at: float
    expires_at: float


def read_config_file(file_path: str | Path) -> Dict[str, Any]:
    """
    Read and parse a YAML or JSON configuration file.

    Unquoted YAML dates and timestamps are kept as strings so the result
    always serializes back to JSON.

    Raises:
        ConfigurationError: If the file cannot be read, cannot be parsed,
            does not hold a mapping, or holds values JSON cannot represent.
    """
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported file format '{suffix}'. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read file {file_path}: {e}") from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.load(content, Loader=ConfigYamlLoader)
        else:
            data = json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to parse {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a mapping (dict), "
            f"got {type(data).__name__}: {file_path}"
        )

    try:
        json.dumps(data, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Configuration file holds a value that is not JSON compatible: {file_path}: {e}"
        ) from e

    return data


class ConfigLoader:
    """
    Multi-source configuration loader with validation, migration and caching.

    Attributes:
        config_dir: Directory searched for configuration files.
        options: Loader behavior.
        validator: Validator applied to every candidate configuration.
        version_manager: Migrates candidates written for older versions.

    Usage::

        loader = ConfigLoader("config")
        result = loader.load("production")
        if result.success:
            settings = result.configuration["global"]
    """

    ENVIRONMENT_VARIABLE = "HOOK_ENVIRONMENT"
    DEFAULT_ENVIRONMENT = "development"

    def __init__(
        self,
        config_dir: str | Path = "config",
        options: Optional[LoaderOptions] = None,
        *,
        validator: Optional[ConfigValidator] = None,
        version_manager: Optional[VersionCompatManager] = None,
        embedded_provider: Optional[EmbeddedProvider] = None,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the configuration loader.

        Args:
            config_dir: Path to the directory containing configuration files.
            options: Loader options. Defaults to LoaderOptions().
            validator: Validator to use. A default one is created if omitted.
            version_manager: Version manager to use for migrations.
            embedded_provider: Callable returning a host-embedded configuration.
            environ: Environment variable mapping. Defaults to os.environ.
            clock: Monotonic time source used for cache expiry.
        """
        self.config_dir = Path(config_dir)
        self.options = options or LoaderOptions()
        self.version_manager = version_manager or VersionCompatManager()
        self.validator = validator or ConfigValidator(version_manager=self.version_manager)
        self.embedded_provider = embedded_provider
        self._environ = environ if environ is not None else os.environ
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}

        logger.info(f"ConfigLoader initialized, config_dir={self.config_dir}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_environment(self, environment: Optional[str] = None) -> str:
        """Explicit environment, else HOOK_ENVIRONMENT, else the default."""
        return environment or self._environ.get(self.ENVIRONMENT_VARIABLE) or self.DEFAULT_ENVIRONMENT

    def load(self, environment: Optional[str] = None, *, use_cache: bool = True) -> LoadResult:
        """
        Load the effective configuration for an environment.

        Sources are tried in precedence order and the first success wins.

        Args:
            environment: Target environment. See resolve_environment().
            use_cache: Whether a cached, unexpired result may be returned.

        Returns:
            LoadResult of the winning source, or a failed result aggregating
            every source's errors.
        """
        env = self.resolve_environment(environment)
        cache_key = self._cache_key(env)

        if use_cache and self.options.enable_caching:
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.debug(f"Returning cached config for: {env}")
                return LoadResult(
                    success=True,
                    source=cached.source,
                    configuration=clone(cached.configuration),
                    warnings=["Configuration loaded from cache"],
                    from_cache=True,
                )

        attempts = [self._load_from_file, self._load_from_embedded, self._load_from_environment]
        if self.options.fallback_to_defaults:
            attempts.append(self._load_from_defaults)

        errors: List[str] = []
        warnings: List[str] = []
        for attempt in attempts:
            result = attempt(env)
            if result.success:
                result.warnings = warnings + result.warnings
                if self.options.enable_caching:
                    self._store(cache_key, result)
                logger.info(f"Configuration loaded for '{env}' from {result.source.value}")
                return result
            if result.errors:
                logger.warning(
                    f"Configuration source {result.source.value} failed for '{env}': "
                    f"{'; '.join(result.errors)}"
                )
            errors.extend(result.errors)
            warnings.extend(result.warnings)

        errors.append("Failed to load configuration from any source")
        logger.error(f"Failed to load configuration for '{env}' from any source")
        return LoadResult(success=False, errors=errors, warnings=warnings)

    def reload(self, environment: Optional[str] = None) -> LoadResult:
        """Drop the cached entry for an environment and load it again."""
        env = self.resolve_environment(environment)
        self.clear_cache(env)
        return self.load(env, use_cache=False)

    def clear_cache(self, environment: Optional[str] = None) -> None:
        """Clear one environment's cached configuration, or all of them."""
        if environment is None:
            self._cache.clear()
            logger.debug("Configuration cache cleared.")
        else:
            self._cache.pop(self._cache_key(environment), None)
            logger.debug(f"Configuration cache cleared for: {environment}")

    def get_cache_stats(self) -> Dict[str, Any]:
        """Describe the cache contents, ages and remaining lifetimes in seconds."""
        now = self._clock()
        return {
            "size": len(self._cache),
            "keys": sorted(self._cache),
            "entries": [
                {
                    "key": key,
                    "source": entry.source.value,
                    "age": now - entry.loaded_at,
                    "expiresIn": max(0.0, entry.expires_at - now),
                }
                for key, entry in sorted(self._cache.items())
            ],
        }

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def candidate_files(self, environment: str) -> List[Path]:
        """Configuration files searched for an environment, in priority order."""
        base = self.options.base_name
        stems = [f"{base}.{environment}", base]
        return [self.config_dir / f"{stem}{ext}" for stem in stems for ext in SUPPORTED_EXTENSIONS]

    def _load_from_file(self, environment: str) -> LoadResult:
        errors: List[str] = []
        warnings: List[str] = []
        for path in self.candidate_files(environment):
            if not path.is_file():
                continue
            logger.debug(f"Loading configuration: {path}")
            try:
                raw = read_config_file(path)
            except ConfigurationError as e:
                errors.append(str(e))
                continue
            result = self._process_raw(raw, ConfigSource.FILE, environment)
            result.file_path = path
            if result.success:
                result.warnings = warnings + result.warnings
                return result
            errors.extend(f"{path.name}: {error}" for error in result.errors)
            warnings.extend(result.warnings)
        return LoadResult(success=False, source=ConfigSource.FILE, errors=errors, warnings=warnings)

    def _load_from_embedded(self, environment: str) -> LoadResult:
        if self.embedded_provider is None:
            return LoadResult(success=False, source=ConfigSource.EMBEDDED)
        try:
            raw = self.embedded_provider(environment)
        except Exception as e:
            return LoadResult(
                success=False,
                source=ConfigSource.EMBEDDED,
                errors=[f"Embedded configuration provider failed: {e}"],
            )
        if raw is None:
            return LoadResult(success=False, source=ConfigSource.EMBEDDED)
        if not isinstance(raw, dict):
            return LoadResult(
                success=False,
                source=ConfigSource.EMBEDDED,
                errors=[f"Embedded configuration must be a mapping, got {type(raw).__name__}"],
            )
        return self._process_raw(raw, ConfigSource.EMBEDDED, environment)

    def _load_from_environment(self, environment: str) -> LoadResult:
        prefix = self.options.environment_prefix
        raw: Dict[str, Any] = {}
        for name, value in sorted(self._environ.items()):
            if not name.startswith(prefix) or len(name) == len(prefix):
                continue
            segments = self._canonical_path(name[len(prefix):].lower())
            try:
                set_path(raw, ".".join(segments), self._parse_env_value(value))
            except ValueError:
                continue

        if not raw:
            return LoadResult(success=False, source=ConfigSource.ENVIRONMENT)
        logger.debug(f"Found {len(raw)} configuration section(s) in environment variables")
        return self._process_raw(raw, ConfigSource.ENVIRONMENT, environment)

    def _load_from_defaults(self, environment: str) -> LoadResult:
        return self._process_raw(build_default_configuration(environment), ConfigSource.DEFAULT, environment)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _process_raw(self, raw: Dict[str, Any], source: ConfigSource, environment: str) -> LoadResult:
        """Merge defaults, migrate, validate and apply environment overrides."""
        result = LoadResult(success=False, source=source)
        config = self._merge_with_defaults(raw, environment)

        declared = raw.get("version")
        current = self.version_manager.get_latest_version()
        if self.options.enable_migration and isinstance(declared, str) and declared != current:
            migration = self.version_manager.migrate_configuration(config, declared, current)
            result.migration = migration
            if not migration.success:
                result.errors.extend(migration.errors)
                return result
            config = migration.migrated_config
            result.warnings.append(f"Configuration migrated from {declared} to {current}")

        if self.options.enable_validation:
            validation = self.validator.validate_system_configuration(config)
            result.validation = validation
            result.warnings.extend(validation.warning_messages)
            if not validation.is_valid:
                result.errors.extend(validation.error_messages)
                return result

        result.configuration = self._apply_environment_overrides(config, environment)
        result.success = True
        return result

    @staticmethod
    def _merge_with_defaults(raw: Dict[str, Any], environment: str) -> Dict[str, Any]:
        """Shallow merge of each section of ``raw`` over the defaults."""
        defaults = build_default_configuration(environment)
        merged = clone(raw)
        merged["version"] = raw.get("version", defaults["version"])
        for section in ("global", "factory", "contentTypes", "environments", "featureFlags", "metadata"):
            value = raw.get(section)
            if value is None:
                merged[section] = defaults[section]
            elif isinstance(value, dict):
                merged[section] = {**defaults[section], **clone(value)}
        return merged

    @staticmethod
    def _apply_environment_overrides(config: Dict[str, Any], environment: str) -> Dict[str, Any]:
        """Merge ``environments[environment]`` onto global and stamp the metadata."""
        result = clone(config)
        environments = result.get("environments")
        overrides = environments.get(environment) if isinstance(environments, dict) else None
        if isinstance(overrides, dict) and overrides and isinstance(result.get("global"), dict):
            result["global"] = {**result["global"], **overrides}
            logger.debug(f"Applied {len(overrides)} override(s) for environment '{environment}'")
        metadata = result.setdefault("metadata", {})
        metadata["environment"] = environment
        metadata["updatedAt"] = utc_now_iso()
        return result

    def _canonical_path(self, key: str) -> List[str]:
        """
        Map a lower-cased variable name onto configuration key names.

        ``global.maxhookexecutiontime`` and ``global_maxhookexecutiontime``
        both become ``["global", "maxHookExecutionTime"]``.
        """
        sections = {name.lower(): name for name in SYSTEM_SECTIONS}
        segments = split_path(key)
        if len(segments) == 1 and "_" in key and key.split("_", 1)[0] in sections:
            segments = [part for part in key.split("_") if part]
        if not segments:
            return [key]

        head, rest = segments[0], segments[1:]
        section = sections.get(head)
        if section is None:
            return segments

        registry = self.validator.registry
        if section in ("global", "factory", "featureFlags"):
            schema_name = {"global": GLOBAL_SECTION, "factory": FACTORY_SECTION,
                           "featureFlags": FEATURE_FLAGS_SECTION}[section]
            return [section] + _match_fields(rest, registry.get_schema(schema_name).fields)
        if section == "contentTypes" and rest:
            return [section, rest[0]] + _match_fields(rest[1:], registry.get_schema(CONTENT_TYPE_SECTION).fields)
        if section == "environments" and rest:
            return [section, rest[0]] + _match_fields(rest[1:], registry.get_schema(GLOBAL_SECTION).fields)
        if section == "metadata":
            return [section] + _match_names(rest, METADATA_KEYS)
        return [section] + rest

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse a variable value: JSON, then boolean literal, then number, else the raw string."""
        try:
            return json.loads(value, parse_constant=_reject_constant)
        except ValueError:
            pass
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        try:
            return int(value)
        except ValueError:
            pass
        try:
            number = float(value)
        except ValueError:
            return value
        return number if math.isfinite(number) else value

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(environment: str) -> str:
        return f"config_{environment}"

    def _get_cached(self, key: str) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._cache[key]
            logger.debug(f"Cache entry expired: {key}")
            return None
        return entry

    def _store(self, key: str, result: LoadResult) -> None:
        now = self._clock()
        self._cache[key] = CacheEntry(
            configuration=clone(result.configuration),
            source=result.source,
            loaded_at=now,
            expires_at=now + self.options.cache_expiration_sec,
        )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Unsupported JSON constant: {name}")


def _match_fields(segments: List[str], fields: Optional[Mapping[str, FieldSpec]]) -> List[str]:
    """Replace each segment with the schema field it names case-insensitively."""
    if not segments:
        return []
    head, rest = segments[0], segments[1:]
    if fields:
        for name, spec in fields.items():
            if name.lower() == head.lower():
                return [name] + _match_fields(rest, spec.properties)
    return [head] + _match_fields(rest, None)


def _match_names(segments: List[str], names: tuple) -> List[str]:
    lookup = {name.lower(): name for name in names}
    return [lookup.get(segment.lower(), segment) for segment in segments]
