"""
Configuration Validator Module.

Checks configuration sections against the Draft-7 rendering of their
field descriptors with jsonschema, then layers unknown-field,
deprecation and cross-section checks on top. Reports blocking errors,
non-blocking warnings and tuning suggestions.
Validation never raises for bad input; every problem becomes an entry
in a ValidationResult.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jsonschema
from loguru import logger

from hookconfig.config.schema_registry import (
    CONTENT_TYPE_SECTION,
    FACTORY_SECTION,
    FEATURE_FLAGS_SECTION,
    GLOBAL_SECTION,
    FieldSpec,
    SchemaRegistry,
    SectionSchema,
)
from hookconfig.config.version_compat import VersionCompatManager


_MISSING = object()

# Error codes
REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
INVALID_TYPE = "INVALID_TYPE"
INVALID_ENUM_VALUE = "INVALID_ENUM_VALUE"
VALUE_TOO_SMALL = "VALUE_TOO_SMALL"
VALUE_TOO_LARGE = "VALUE_TOO_LARGE"
STRING_TOO_SHORT = "STRING_TOO_SHORT"
STRING_TOO_LONG = "STRING_TOO_LONG"
PATTERN_MISMATCH = "PATTERN_MISMATCH"
INVALID_VERSION_FORMAT = "INVALID_VERSION_FORMAT"
INVALID_CONTENT_TYPE_NAME = "INVALID_CONTENT_TYPE_NAME"
INVALID_FEATURE_FLAG_NAME = "INVALID_FEATURE_FLAG_NAME"
SCHEMA_VIOLATION = "SCHEMA_VIOLATION"

# jsonschema keyword -> (code, message template)
_LIMIT_MESSAGES = {
    "minimum": (VALUE_TOO_SMALL, "Value must be at least {}"),
    "maximum": (VALUE_TOO_LARGE, "Value must be at most {}"),
    "minLength": (STRING_TOO_SHORT, "String must be at least {} characters"),
    "maxLength": (STRING_TOO_LONG, "String must be at most {} characters"),
    "pattern": (PATTERN_MISMATCH, "String does not match pattern: {}"),
}

# Warning codes
UNKNOWN_FIELD = "UNKNOWN_FIELD"
DEPRECATED_FIELD = "DEPRECATED_FIELD"
UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
DEPENDENCY_MISMATCH = "DEPENDENCY_MISMATCH"

CONTENT_TYPE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
FEATURE_FLAG_NAME_PATTERN = re.compile(r"^[a-z][a-zA-Z0-9]*$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

SYSTEM_SECTIONS = ("version", "global", "factory", "contentTypes", "environments", "featureFlags", "metadata")


# ---------------------------------------------------------------------------
# Result Types
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A blocking problem with one field."""

    field: str
    message: str
    code: str
    value: Any = None
    expected_type: Optional[str] = None
    allowed_values: Optional[List[Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationWarning:
    """A non-blocking problem with one field."""

    field: str
    message: str
    code: str
    value: Any = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationSuggestion:
    """A recommended value for a field, never blocking."""

    field: str
    message: str
    suggested_value: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    """Outcome of validating a configuration or one of its sections."""

    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    suggestions: List[ValidationSuggestion] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True when there are no blocking errors."""
        return not self.errors

    @property
    def error_messages(self) -> List[str]:
        return [f"{e.field}: {e.message}" for e in self.errors]

    @property
    def warning_messages(self) -> List[str]:
        return [f"{w.field}: {w.message}" for w in self.warnings]

    def has_error(self, code: str) -> bool:
        return any(e.code == code for e in self.errors)

    def has_warning(self, code: str) -> bool:
        return any(w.code == code for w in self.warnings)

    def extend(self, other: "ValidationResult") -> None:
        """Append every entry of another result to this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.suggestions.extend(other.suggestions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity in [0, 1] derived from edit distance."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a.lower(), b.lower())) / longer


def find_similar_field(name: str, candidates: List[str], threshold: float = 0.6) -> Optional[str]:
    """Return the most similar candidate at or above ``threshold``, if any."""
    best: Optional[str] = None
    best_score = threshold
    for candidate in candidates:
        score = similarity(name, candidate)
        if score >= best_score and (best is None or score > best_score):
            best, best_score = candidate, score
    return best


def type_name(value: Any) -> str:
    """Descriptor type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def matches_type(value: Any, expected: str) -> bool:
    """Whether a value satisfies a descriptor type. Booleans are not numbers."""
    if expected == "number":
        return (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and not (isinstance(value, float) and math.isnan(value))
        )
    return type_name(value) == expected


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _format_path(prefix: str, location: Tuple[Any, ...]) -> str:
    """Dotted field path for a jsonschema error location, with ``[i]`` for array items."""
    path = prefix
    for part in location:
        path = f"{path}[{part}]" if isinstance(part, int) else _join(path, str(part))
    return path or "(root)"


def _is_shadowed(location: Tuple[Any, ...], kind: str, mistyped: List[Tuple[Any, ...]]) -> bool:
    """Whether an error sits on or below a field that already has a type error."""
    for typed in mistyped:
        if location[:len(typed)] != typed:
            continue
        if kind != "type" or len(location) > len(typed):
            return True
    return False


def _is_number(checker: Any, instance: Any) -> bool:
    return jsonschema.Draft7Validator.TYPE_CHECKER.is_type(instance, "number") and not (
        isinstance(instance, float) and math.isnan(instance)
    )


# Draft-7 with NaN excluded from "number"; booleans are already excluded.
HookSchemaValidator = jsonschema.validators.extend(
    jsonschema.Draft7Validator,
    type_checker=jsonschema.Draft7Validator.TYPE_CHECKER.redefine("number", _is_number),
)


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class ConfigValidator:
    """
    Validates configuration sections and complete system configurations.

    Usage::

        validator = ConfigValidator()
        result = validator.validate_system_configuration(config)
        if not result.is_valid:
            for message in result.error_messages:
                print(message)
    """

    SIMILARITY_THRESHOLD = 0.6
    TIMEOUT_SUGGESTION_THRESHOLD = 30000
    SUGGESTED_TIMEOUT = 10000
    EXECUTION_TIME_SUGGESTION_THRESHOLD = 200
    SUGGESTED_EXECUTION_TIME = 100

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        version_manager: Optional[VersionCompatManager] = None,
    ) -> None:
        self.registry = registry or SchemaRegistry()
        self.version_manager = version_manager or VersionCompatManager()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self, instance: Any, schema: SectionSchema | str, prefix: str = ""
    ) -> ValidationResult:
        """
        Validate a section instance against a schema.

        Args:
            instance: The section mapping to check.
            schema: A SectionSchema or the name of a registered one.
            prefix: Path prefix added to every reported field.

        Returns:
            ValidationResult with errors, warnings and suggestions.
        """
        if isinstance(schema, str):
            schema = self.registry.get_schema(schema)

        result = ValidationResult()
        if not isinstance(instance, dict):
            result.errors.append(ValidationError(
                field=prefix or "(root)",
                message=f"Expected object, got {type_name(instance)}",
                code=INVALID_TYPE,
                value=instance,
                expected_type="object",
            ))
            return result

        known = schema.field_names
        for key, value in instance.items():
            if key not in schema.fields:
                self._warn_unknown(result, _join(prefix, key), key, known, value)

        result.extend(self._check_against_schema(instance, schema.to_json_schema(), prefix))
        self._warn_deprecated(instance, schema.fields, prefix, result)
        self._add_performance_suggestions(instance, prefix, result)
        return result

    def validate_hook_configuration(self, config: Any, prefix: str = "global") -> ValidationResult:
        """Validate the global hook settings section."""
        return self.validate(config, GLOBAL_SECTION, prefix)

    def validate_factory_configuration(self, config: Any, prefix: str = "factory") -> ValidationResult:
        """Validate the service factory section."""
        return self.validate(config, FACTORY_SECTION, prefix)

    def validate_content_type_configuration(
        self, config: Any, prefix: str = "contentType"
    ) -> ValidationResult:
        """Validate the settings of a single content type."""
        return self.validate(config, CONTENT_TYPE_SECTION, prefix)

    def validate_feature_flags(self, config: Any, prefix: str = "featureFlags") -> ValidationResult:
        """Validate the feature flag section."""
        return self.validate(config, FEATURE_FLAGS_SECTION, prefix)

    def validate_system_configuration(self, config: Any) -> ValidationResult:
        """
        Validate a complete system configuration.

        Checks the version, every section (each content type and each
        environment override block individually), any extra sections with a
        registered schema, and the cross-section dependencies.

        Args:
            config: The full configuration mapping.

        Returns:
            Aggregated ValidationResult with section-prefixed field paths.
        """
        result = ValidationResult()
        if not isinstance(config, dict):
            result.errors.append(ValidationError(
                field="(root)",
                message=f"Configuration must be an object, got {type_name(config)}",
                code=INVALID_TYPE,
                value=config,
                expected_type="object",
            ))
            return result

        self._validate_version(config, result)

        extra_sections = [
            name for name in self.registry.list_schemas()
            if name not in (GLOBAL_SECTION, FACTORY_SECTION, CONTENT_TYPE_SECTION, FEATURE_FLAGS_SECTION)
        ]
        known_sections = list(SYSTEM_SECTIONS) + extra_sections
        for key, value in config.items():
            if key not in known_sections:
                self._warn_unknown(result, key, key, known_sections, value)

        for section, validate in (
            ("global", self.validate_hook_configuration),
            ("factory", self.validate_factory_configuration),
            ("featureFlags", self.validate_feature_flags),
        ):
            if section not in config:
                result.errors.append(ValidationError(
                    field=section,
                    message=f"Required section '{section}' is missing",
                    code=REQUIRED_FIELD_MISSING,
                ))
            else:
                result.extend(validate(config[section], section))

        content_types = config.get("contentTypes", {})
        if self._check_mapping(content_types, "contentTypes", result):
            for name, content_type in content_types.items():
                path = f"contentTypes.{name}"
                if not CONTENT_TYPE_NAME_PATTERN.match(str(name)):
                    result.errors.append(ValidationError(
                        field=path,
                        message=(
                            f"Content type name '{name}' must start with a lowercase letter "
                            "and contain only lowercase letters, digits and hyphens"
                        ),
                        code=INVALID_CONTENT_TYPE_NAME,
                        value=name,
                    ))
                result.extend(self.validate_content_type_configuration(content_type, path))

        environments = config.get("environments", {})
        if self._check_mapping(environments, "environments", result):
            for env_name, overrides in environments.items():
                result.extend(self._validate_partial(overrides, GLOBAL_SECTION, f"environments.{env_name}"))

        metadata = config.get("metadata", {})
        self._check_mapping(metadata, "metadata", result)

        for section in extra_sections:
            if section in config:
                result.extend(self.validate(config[section], section, section))

        self._check_dependencies(config, result)

        logger.debug(
            f"System configuration validated, errors={len(result.errors)}, "
            f"warnings={len(result.warnings)}, suggestions={len(result.suggestions)}"
        )
        return result

    # ------------------------------------------------------------------
    # Private Helpers
    # ------------------------------------------------------------------

    def _check_against_schema(
        self, instance: Dict[str, Any], json_schema: Dict[str, Any], prefix: str
    ) -> ValidationResult:
        """
        Run the Draft-7 validator and map each failure to a coded entry.

        A type error on a field hides every other error for that field and
        its children. Objects closed with ``additionalProperties: false``
        produce unknown-field warnings rather than errors.
        """
        result = ValidationResult()
        errors = list(HookSchemaValidator(json_schema).iter_errors(instance))
        mistyped = [tuple(e.absolute_path) for e in errors if e.validator == "type"]
        required_checked = set()

        for error in errors:
            location = tuple(error.absolute_path)
            if _is_shadowed(location, error.validator, mistyped):
                continue
            path = _format_path(prefix, location)

            if error.validator == "required":
                if location in required_checked:
                    continue
                required_checked.add(location)
                properties = error.schema.get("properties", {})
                for name in error.validator_value:
                    if name not in error.instance:
                        missing = _join(path if location else prefix, name)
                        result.errors.append(ValidationError(
                            field=missing,
                            message=f"Required field '{missing}' is missing",
                            code=REQUIRED_FIELD_MISSING,
                            expected_type=properties.get(name, {}).get("type"),
                        ))
            elif error.validator == "additionalProperties":
                known = list(error.schema.get("properties", {}))
                for key, value in error.instance.items():
                    if key not in known:
                        self._warn_unknown(result, f"{path}.{key}", key, known, value)
            else:
                result.errors.append(self._coded_error(error, path))
        return result

    @staticmethod
    def _coded_error(error: jsonschema.ValidationError, path: str) -> ValidationError:
        kind = error.validator
        limit = error.validator_value
        value = error.instance

        if kind == "type":
            return ValidationError(
                field=path,
                message=f"Expected {limit}, got {type_name(value)}",
                code=INVALID_TYPE,
                value=value,
                expected_type=limit,
            )
        if kind == "enum":
            return ValidationError(
                field=path,
                message=f"Value must be one of: {', '.join(str(v) for v in limit)}",
                code=INVALID_ENUM_VALUE,
                value=value,
                allowed_values=list(limit),
            )
        if kind in _LIMIT_MESSAGES:
            code, template = _LIMIT_MESSAGES[kind]
            return ValidationError(field=path, message=template.format(limit), code=code, value=value)
        return ValidationError(field=path, message=error.message, code=SCHEMA_VIOLATION, value=value)

    def _warn_deprecated(
        self, instance: Dict[str, Any], fields: Mapping[str, FieldSpec], prefix: str, result: ValidationResult
    ) -> None:
        for name, spec in fields.items():
            if name not in instance:
                continue
            value = instance[name]
            path = _join(prefix, name)
            if spec.deprecated:
                result.warnings.append(ValidationWarning(
                    field=path,
                    message=f"Field '{path}' is deprecated",
                    code=DEPRECATED_FIELD,
                    value=value,
                    suggestion="Remove this field or migrate to its replacement",
                ))
            if spec.properties is not None and isinstance(value, dict):
                self._warn_deprecated(value, spec.properties, path, result)

    def _validate_partial(self, instance: Any, schema_name: str, prefix: str) -> ValidationResult:
        """Validate an override block: known fields are checked, none are required."""
        result = ValidationResult()
        if not self._check_mapping(instance, prefix, result):
            return result
        schema = self.registry.get_schema(schema_name)
        known = schema.field_names
        for key, value in instance.items():
            if key not in schema.fields:
                self._warn_unknown(result, _join(prefix, key), key, known, value)

        json_schema = schema.to_json_schema()
        json_schema.pop("required", None)
        result.extend(self._check_against_schema(instance, json_schema, prefix))
        self._warn_deprecated(instance, schema.fields, prefix, result)
        return result

    def _warn_unknown(
        self, result: ValidationResult, path: str, key: str, known: List[str], value: Any
    ) -> None:
        similar = find_similar_field(str(key), known, self.SIMILARITY_THRESHOLD)
        result.warnings.append(ValidationWarning(
            field=path,
            message=f"Unknown field '{key}'",
            code=UNKNOWN_FIELD,
            value=value,
            suggestion=f"Did you mean '{similar}'?" if similar else None,
        ))

    @staticmethod
    def _check_mapping(value: Any, path: str, result: ValidationResult) -> bool:
        if isinstance(value, dict):
            return True
        result.errors.append(ValidationError(
            field=path,
            message=f"Expected object, got {type_name(value)}",
            code=INVALID_TYPE,
            value=value,
            expected_type="object",
        ))
        return False

    def _validate_version(self, config: Dict[str, Any], result: ValidationResult) -> None:
        version = config.get("version", _MISSING)
        if version is _MISSING:
            result.errors.append(ValidationError(
                field="version",
                message="Required field 'version' is missing",
                code=REQUIRED_FIELD_MISSING,
                expected_type="string",
            ))
            return
        if not isinstance(version, str) or not VERSION_PATTERN.match(version):
            result.errors.append(ValidationError(
                field="version",
                message=f"Invalid version format: {version} (expected x.y.z)",
                code=INVALID_VERSION_FORMAT,
                value=version,
            ))
            return

        latest = self.version_manager.get_latest_version()
        if not self.version_manager.is_version_supported(version):
            result.warnings.append(ValidationWarning(
                field="version",
                message=f"Configuration version {version} is not supported",
                code=UNSUPPORTED_VERSION,
                value=version,
                suggestion=f"Update to version {latest}",
            ))
        if version != latest and self.version_manager.is_migration_available(version, latest):
            result.suggestions.append(ValidationSuggestion(
                field="version",
                message=f"Migration available from {version} to {latest}",
                suggested_value=latest,
                reason="Newer versions include additional features and fixes",
            ))

    def _add_performance_suggestions(
        self, instance: Dict[str, Any], prefix: str, result: ValidationResult
    ) -> None:
        if instance.get("enableCaching") is False:
            result.suggestions.append(ValidationSuggestion(
                field=_join(prefix, "enableCaching"),
                message="Consider enabling caching for better performance",
                suggested_value=True,
                reason="Caching reduces repeated work in hook execution",
            ))

        if instance.get("enableGracefulDegradation") is False:
            result.suggestions.append(ValidationSuggestion(
                field=_join(prefix, "enableGracefulDegradation"),
                message="Consider enabling graceful degradation",
                suggested_value=True,
                reason="Keeps hooks working when a dependent service fails",
            ))

        for key, value in instance.items():
            if "Timeout" in key and matches_type(value, "number") and value > self.TIMEOUT_SUGGESTION_THRESHOLD:
                result.suggestions.append(ValidationSuggestion(
                    field=_join(prefix, key),
                    message=f"Timeout of {value}ms is high",
                    suggested_value=min(value, self.SUGGESTED_TIMEOUT),
                    reason="Long timeouts delay failure detection",
                ))

        execution_time = instance.get("maxHookExecutionTime")
        if matches_type(execution_time, "number") and execution_time > self.EXECUTION_TIME_SUGGESTION_THRESHOLD:
            result.suggestions.append(ValidationSuggestion(
                field=_join(prefix, "maxHookExecutionTime"),
                message=f"Hook execution time of {execution_time}ms is high",
                suggested_value=self.SUGGESTED_EXECUTION_TIME,
                reason="Slow hooks delay every content operation",
            ))

    @staticmethod
    def _check_dependencies(config: Dict[str, Any], result: ValidationResult) -> None:
        hook = config.get("global") if isinstance(config.get("global"), dict) else {}
        factory = config.get("factory") if isinstance(config.get("factory"), dict) else {}
        flags = config.get("featureFlags") if isinstance(config.get("featureFlags"), dict) else {}

        if flags.get("enableBackgroundJobs") is True and hook.get("enableAsyncCalculations") is False:
            result.warnings.append(ValidationWarning(
                field="global.enableAsyncCalculations",
                message="Background jobs are enabled but async calculations are disabled",
                code=DEPENDENCY_MISMATCH,
                value=False,
                suggestion="Enable async calculations to use background jobs",
            ))

        if hook.get("enableCaching") is False and flags.get("enableValidationCaching") is True:
            result.warnings.append(ValidationWarning(
                field="featureFlags.enableValidationCaching",
                message="Validation caching is enabled but global caching is disabled",
                code=DEPENDENCY_MISMATCH,
                value=True,
                suggestion="Enable global caching or disable validation caching",
            ))

        if hook.get("enableMetrics") is False and factory.get("enableServiceMetrics") is True:
            result.warnings.append(ValidationWarning(
                field="factory.enableServiceMetrics",
                message="Service metrics are enabled but global metrics are disabled",
                code=DEPENDENCY_MISMATCH,
                value=True,
                suggestion="Enable global metrics or disable service metrics",
            ))
