"""
Tests for configuration validation: errors, warnings and suggestions.
"""

from __future__ import annotations

from typing import Any, Dict

import pytest

from hookconfig.config.schema_registry import FieldSpec, SchemaRegistry, SectionSchema
from hookconfig.config.validator import (
    DEPENDENCY_MISMATCH,
    DEPRECATED_FIELD,
    INVALID_CONTENT_TYPE_NAME,
    INVALID_ENUM_VALUE,
    INVALID_TYPE,
    INVALID_VERSION_FORMAT,
    PATTERN_MISMATCH,
    REQUIRED_FIELD_MISSING,
    STRING_TOO_SHORT,
    UNKNOWN_FIELD,
    UNSUPPORTED_VERSION,
    VALUE_TOO_LARGE,
    VALUE_TOO_SMALL,
    ConfigValidator,
    find_similar_field,
    levenshtein_distance,
    matches_type,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    """Tests for the similarity and type helpers."""

    def test_levenshtein_distance(self) -> None:
        """Test the edit distance on a few known pairs."""
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_find_similar_field(self) -> None:
        """Test that a near-miss resolves to the closest known name."""
        candidates = ["enableCaching", "logLevel", "retryAttempts"]
        assert find_similar_field("enableCachng", candidates) == "enableCaching"
        assert find_similar_field("loglevel", candidates) == "logLevel"
        assert find_similar_field("somethingElse", candidates) is None

    def test_booleans_are_not_numbers(self) -> None:
        """Test that True/False never satisfy a number field."""
        assert matches_type(5, "number")
        assert matches_type(2.5, "number")
        assert not matches_type(True, "number")
        assert not matches_type(float("nan"), "number")
        assert matches_type(False, "boolean")


# ---------------------------------------------------------------------------
# Section Validation
# ---------------------------------------------------------------------------


class TestSectionValidation:
    """Tests for single-section validation."""

    def test_defaults_are_valid(self, validator: ConfigValidator) -> None:
        """Test that the built-in defaults of each section validate cleanly."""
        registry = validator.registry
        for name in registry.list_schemas():
            result = validator.validate(registry.defaults(name), name)
            assert result.is_valid, result.error_messages
            assert not result.warnings

    def test_value_too_large(self, validator: ConfigValidator) -> None:
        """Test that an execution time above the maximum is rejected."""
        result = validator.validate_hook_configuration({"maxHookExecutionTime": 10000})

        assert not result.is_valid
        assert result.has_error(VALUE_TOO_LARGE)
        assert result.errors[0].field == "global.maxHookExecutionTime"

    def test_value_too_small(self, validator: ConfigValidator) -> None:
        """Test that values below the minimum are rejected."""
        result = validator.validate_hook_configuration({"retryAttempts": -1})
        assert result.has_error(VALUE_TOO_SMALL)

    def test_invalid_type(self, validator: ConfigValidator) -> None:
        """Test that a string in a number field is an INVALID_TYPE error."""
        result = validator.validate_hook_configuration({"retryAttempts": "3"})

        assert result.has_error(INVALID_TYPE)
        assert result.errors[0].expected_type == "number"

    def test_boolean_in_number_field(self, validator: ConfigValidator) -> None:
        """Test that a boolean is not accepted where a number is expected."""
        result = validator.validate_hook_configuration({"retryAttempts": True})
        assert result.has_error(INVALID_TYPE)

    def test_type_error_hides_other_errors_for_field(self, validator: ConfigValidator) -> None:
        """Test that a mistyped field reports only its type error."""
        result = validator.validate_hook_configuration({"logLevel": 5, "retryAttempts": 50})

        assert sorted((e.field, e.code) for e in result.errors) == [
            ("global.logLevel", INVALID_TYPE),
            ("global.retryAttempts", VALUE_TOO_LARGE),
        ]
        assert not result.has_error(INVALID_ENUM_VALUE)

    def test_nan_is_not_a_number(self, validator: ConfigValidator) -> None:
        """Test that NaN is refused where a number is expected."""
        result = validator.validate_hook_configuration({"maxHookExecutionTime": float("nan")})

        assert not result.is_valid
        assert [e.code for e in result.errors] == [INVALID_TYPE]

    def test_invalid_enum(self, validator: ConfigValidator) -> None:
        """Test that logLevel only accepts the listed levels."""
        result = validator.validate_hook_configuration({"logLevel": "verbose"})

        assert result.has_error(INVALID_ENUM_VALUE)
        assert result.errors[0].allowed_values == ["error", "warn", "info", "debug"]

    def test_unknown_field_with_suggestion(self, validator: ConfigValidator) -> None:
        """Test that a misspelt key warns and suggests the closest field."""
        result = validator.validate_hook_configuration({"enableCachng": True})

        assert result.is_valid
        assert result.has_warning(UNKNOWN_FIELD)
        warning = result.warnings[0]
        assert warning.message == "Unknown field 'enableCachng'"
        assert warning.suggestion == "Did you mean 'enableCaching'?"

    def test_not_a_mapping(self, validator: ConfigValidator) -> None:
        """Test that a non-object section is reported instead of raising."""
        result = validator.validate_feature_flags(["enableHookMetrics"])
        assert result.has_error(INVALID_TYPE)

    def test_performance_suggestions(self, validator: ConfigValidator) -> None:
        """Test that valid but slow settings produce suggestions, not errors."""
        result = validator.validate_hook_configuration(
            {"enableCaching": False, "maxHookExecutionTime": 500}
        )

        assert result.is_valid
        suggested = {s.field: s.suggested_value for s in result.suggestions}
        assert suggested["global.enableCaching"] is True
        assert suggested["global.maxHookExecutionTime"] == 100

    def test_timeout_suggestion(self, validator: ConfigValidator) -> None:
        """Test that long timeouts suggest a shorter value."""
        result = validator.validate_hook_configuration({"backgroundJobTimeout": 120000})
        suggested = {s.field: s.suggested_value for s in result.suggestions}
        assert suggested["global.backgroundJobTimeout"] == 10000

    def test_content_type_hooks_reject_unknown_events(self, validator: ConfigValidator) -> None:
        """Test that the hooks object only knows the lifecycle events."""
        result = validator.validate_content_type_configuration(
            {"hooks": {"beforeCreate": True, "onPublish": True}}
        )
        assert result.has_warning(UNKNOWN_FIELD)
        assert result.warnings[0].field == "contentType.hooks.onPublish"

    def test_array_items_checked(self, validator: ConfigValidator) -> None:
        """Test that array items are checked against the item descriptor."""
        result = validator.validate_content_type_configuration({"validationRules": ["required", 3]})
        assert result.has_error(INVALID_TYPE)
        assert result.errors[0].field == "contentType.validationRules[1]"


class TestCustomSchema:
    """Tests for descriptor constraints not used by the built-in sections."""

    @pytest.fixture
    def custom_validator(self) -> ConfigValidator:
        registry = SchemaRegistry()
        registry.register(SectionSchema(
            name="audit",
            fields={
                "sink": FieldSpec("string", required=True, min_length=3, pattern=r"^[a-z]+$"),
                "legacyMode": FieldSpec("boolean", deprecated=True),
            },
        ))
        return ConfigValidator(registry=registry)

    def test_required_field_reported_once(self, custom_validator: ConfigValidator) -> None:
        """Test that a missing required field gives a single error."""
        result = custom_validator.validate({}, "audit", "audit")

        assert [e.code for e in result.errors] == [REQUIRED_FIELD_MISSING]
        assert result.errors[0].field == "audit.sink"

    def test_string_constraints(self, custom_validator: ConfigValidator) -> None:
        """Test length and pattern checks on strings."""
        result = custom_validator.validate({"sink": "A1"}, "audit")
        assert result.has_error(STRING_TOO_SHORT)
        assert result.has_error(PATTERN_MISMATCH)

    def test_deprecated_field_warns(self, custom_validator: ConfigValidator) -> None:
        """Test that setting a deprecated field is a warning only."""
        result = custom_validator.validate({"sink": "file", "legacyMode": True}, "audit")
        assert result.is_valid
        assert result.has_warning(DEPRECATED_FIELD)

    def test_extra_section_in_system_configuration(
        self, custom_validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that registered extra sections are validated when present."""
        default_config["audit"] = {"sink": "x"}
        result = custom_validator.validate_system_configuration(default_config)

        assert not result.has_warning(UNKNOWN_FIELD)
        assert result.has_error(STRING_TOO_SHORT)


# ---------------------------------------------------------------------------
# System Validation
# ---------------------------------------------------------------------------


class TestSystemValidation:
    """Tests for whole-configuration validation."""

    def test_default_configuration_valid(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that the built-in default configuration is valid."""
        result = validator.validate_system_configuration(default_config)
        assert result.is_valid, result.error_messages
        assert not result.warnings

    def test_invalid_content_type_name(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that content type names must be lowercase kebab-case."""
        default_config["contentTypes"]["BlogPost"] = {"enabled": True}
        result = validator.validate_system_configuration(default_config)

        assert result.has_error(INVALID_CONTENT_TYPE_NAME)
        assert result.errors[0].field == "contentTypes.BlogPost"

    def test_valid_content_type(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that a well-named content type validates its settings."""
        default_config["contentTypes"]["blog-post"] = {"enabled": "yes"}
        result = validator.validate_system_configuration(default_config)

        assert not result.has_error(INVALID_CONTENT_TYPE_NAME)
        assert result.errors[0].field == "contentTypes.blog-post.enabled"

    def test_missing_version(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that the version field is required."""
        del default_config["version"]
        result = validator.validate_system_configuration(default_config)
        assert result.has_error(REQUIRED_FIELD_MISSING)

    def test_bad_version_format(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that versions must be three dotted numbers."""
        default_config["version"] = "1.0"
        result = validator.validate_system_configuration(default_config)
        assert result.has_error(INVALID_VERSION_FORMAT)

    def test_unsupported_version_warns(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that an unknown but well-formed version is only a warning."""
        default_config["version"] = "2.0.0"
        result = validator.validate_system_configuration(default_config)

        assert result.is_valid
        assert result.has_warning(UNSUPPORTED_VERSION)

    def test_old_version_suggests_migration(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that a migratable version produces a migration suggestion."""
        default_config["version"] = "0.9.0"
        result = validator.validate_system_configuration(default_config)

        version_suggestions = [s for s in result.suggestions if s.field == "version"]
        assert version_suggestions[0].suggested_value == "1.0.0"

    def test_missing_required_section(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that global, factory and featureFlags are required."""
        del default_config["factory"]
        result = validator.validate_system_configuration(default_config)

        assert "factory: Required section 'factory' is missing" in result.error_messages

    def test_unknown_section_warns(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that an unknown top-level key warns with a suggestion."""
        default_config["featureFlag"] = {}
        result = validator.validate_system_configuration(default_config)

        assert result.is_valid
        assert result.warnings[0].suggestion == "Did you mean 'featureFlags'?"

    def test_environment_overrides_checked(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test that environment override blocks are checked against the global fields."""
        default_config["environments"]["staging"] = {"logLevel": "verbose"}
        result = validator.validate_system_configuration(default_config)

        assert result.has_error(INVALID_ENUM_VALUE)
        assert result.errors[0].field == "environments.staging.logLevel"

    def test_dependency_mismatch(
        self, validator: ConfigValidator, default_config: Dict[str, Any]
    ) -> None:
        """Test the cross-section consistency warnings."""
        default_config["global"]["enableAsyncCalculations"] = False
        default_config["global"]["enableMetrics"] = False
        result = validator.validate_system_configuration(default_config)

        mismatches = [w.field for w in result.warnings if w.code == DEPENDENCY_MISMATCH]
        assert "global.enableAsyncCalculations" in mismatches
        assert "factory.enableServiceMetrics" in mismatches

    def test_result_to_dict(self, validator: ConfigValidator) -> None:
        """Test the serialized result shape."""
        data = validator.validate_system_configuration("nope").to_dict()

        assert data["isValid"] is False
        assert data["errors"][0]["code"] == INVALID_TYPE
