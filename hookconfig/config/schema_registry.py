"""
Schema Registry Module.

Holds the field descriptors for every configuration section (hook
settings, factory, content types, feature flags) and their defaults.
Extra section schemas can be loaded from JSON descriptor documents on
disk; those documents are checked against a meta-schema with jsonschema
before they are registered.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import jsonschema
from loguru import logger

from hookconfig.config.errors import SchemaNotFoundError, SchemaValidationError
from hookconfig.config.utils import clone


CURRENT_VERSION = "1.0.0"

GLOBAL_SECTION = "global"
FACTORY_SECTION = "factory"
CONTENT_TYPE_SECTION = "contentType"
FEATURE_FLAGS_SECTION = "featureFlags"

FIELD_TYPES = ("object", "string", "number", "boolean", "array")


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldSpec:
    """
    Descriptor for a single configuration field.

    Instances are immutable; nested ``properties`` are exposed through a
    read-only mapping.
    """

    type: str
    required: bool = False
    default: Any = None
    enum: Optional[tuple] = None
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    description: str = ""
    deprecated: bool = False
    version: Optional[str] = None
    properties: Optional[Mapping[str, "FieldSpec"]] = None
    items: Optional["FieldSpec"] = None
    additional_properties: bool = True

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type '{self.type}'. Supported: {FIELD_TYPES}")
        if self.enum is not None and not isinstance(self.enum, tuple):
            object.__setattr__(self, "enum", tuple(self.enum))
        if self.properties is not None and not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def default_value(self) -> Any:
        """Return an independent copy of the default."""
        return clone(self.default)

    @classmethod
    def from_dict(cls, descriptor: Dict[str, Any]) -> "FieldSpec":
        """Build a descriptor from its camelCase document form."""
        properties = descriptor.get("properties")
        items = descriptor.get("items")
        return cls(
            type=descriptor["type"],
            required=descriptor.get("required", False),
            default=descriptor.get("default"),
            enum=descriptor.get("enum"),
            min=descriptor.get("min"),
            max=descriptor.get("max"),
            min_length=descriptor.get("minLength"),
            max_length=descriptor.get("maxLength"),
            pattern=descriptor.get("pattern"),
            description=descriptor.get("description", ""),
            deprecated=descriptor.get("deprecated", False),
            version=descriptor.get("version"),
            properties=(
                {name: cls.from_dict(child) for name, child in properties.items()}
                if properties is not None
                else None
            ),
            items=cls.from_dict(items) if items is not None else None,
            additional_properties=descriptor.get("additionalProperties", True),
        )

    def to_json_schema(self) -> Dict[str, Any]:
        """Render the descriptor as a Draft-7 JSON schema fragment."""
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.default is not None:
            schema["default"] = self.default_value()
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.min is not None:
            schema["minimum"] = self.min
        if self.max is not None:
            schema["maximum"] = self.max
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        if self.max_length is not None:
            schema["maxLength"] = self.max_length
        if self.pattern is not None:
            schema["pattern"] = self.pattern
        if self.deprecated:
            schema["deprecated"] = True
        if self.properties is not None:
            schema["properties"] = {
                name: child.to_json_schema() for name, child in self.properties.items()
            }
            required = [name for name, child in self.properties.items() if child.required]
            if required:
                schema["required"] = required
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        if self.type == "object" and not self.additional_properties:
            schema["additionalProperties"] = False
        return schema


@dataclass(frozen=True)
class SectionSchema:
    """Named, versioned set of field descriptors for one configuration section."""

    name: str
    fields: Mapping[str, FieldSpec]
    version: str = CURRENT_VERSION
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.fields, MappingProxyType):
            object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def field_names(self) -> List[str]:
        """Names of all top-level fields."""
        return list(self.fields)

    @property
    def required_fields(self) -> List[str]:
        """Names of fields that must be present."""
        return [name for name, spec in self.fields.items() if spec.required]

    def defaults(self) -> Dict[str, Any]:
        """Build a fresh dict holding every field's default value."""
        return {
            name: spec.default_value()
            for name, spec in self.fields.items()
            if spec.default is not None
        }

    def to_json_schema(self) -> Dict[str, Any]:
        """Render the section as a standalone Draft-7 JSON schema."""
        schema: Dict[str, Any] = {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "title": self.name,
            "type": "object",
            "properties": {name: spec.to_json_schema() for name, spec in self.fields.items()},
        }
        if self.description:
            schema["description"] = self.description
        if self.required_fields:
            schema["required"] = self.required_fields
        return schema

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> "SectionSchema":
        """Build a section schema from a descriptor document."""
        return cls(
            name=document["name"],
            version=document.get("version", CURRENT_VERSION),
            description=document.get("description", ""),
            fields={name: FieldSpec.from_dict(spec) for name, spec in document["fields"].items()},
        )


# ---------------------------------------------------------------------------
# Built-in Section Schemas
# ---------------------------------------------------------------------------


HOOK_FIELDS: Dict[str, FieldSpec] = {
    "enableStrictValidation": FieldSpec(
        "boolean", default=False,
        description="Enable strict validation mode that fails on warnings",
    ),
    "enableAsyncCalculations": FieldSpec(
        "boolean", default=True,
        description="Enable asynchronous calculation processing",
    ),
    "maxHookExecutionTime": FieldSpec(
        "number", default=100, min=10, max=5000,
        description="Maximum hook execution time in milliseconds",
    ),
    "retryAttempts": FieldSpec(
        "number", default=2, min=0, max=10,
        description="Number of retry attempts for failed operations",
    ),
    "enableGracefulDegradation": FieldSpec(
        "boolean", default=True,
        description="Enable graceful degradation when services fail",
    ),
    "logLevel": FieldSpec(
        "string", default="warn", enum=("error", "warn", "info", "debug"),
        description="Logging level for hook operations",
    ),
    "enableMetrics": FieldSpec(
        "boolean", default=True,
        description="Enable performance metrics collection",
    ),
    "metricsRetentionDays": FieldSpec(
        "number", default=30, min=1, max=365,
        description="Number of days to retain metrics data",
    ),
    "enableCaching": FieldSpec(
        "boolean", default=True, version="1.0.0",
        description="Enable caching for improved performance",
    ),
    "cacheExpirationMs": FieldSpec(
        "number", default=300000, min=60000, max=3600000, version="1.0.0",
        description="Cache expiration time in milliseconds",
    ),
    "enableBackgroundJobs": FieldSpec(
        "boolean", default=True, version="1.0.0",
        description="Enable background job processing",
    ),
    "backgroundJobTimeout": FieldSpec(
        "number", default=30000, min=5000, max=300000, version="1.0.0",
        description="Background job timeout in milliseconds",
    ),
    "enableValidationWarnings": FieldSpec(
        "boolean", default=True,
        description="Show validation warnings to users",
    ),
    "validationTimeout": FieldSpec(
        "number", default=5000, min=1000, max=30000,
        description="Validation timeout in milliseconds",
    ),
    "enableCalculationFallbacks": FieldSpec(
        "boolean", default=True,
        description="Enable fallback values when calculations fail",
    ),
    "calculationTimeout": FieldSpec(
        "number", default=10000, min=1000, max=60000,
        description="Calculation timeout in milliseconds",
    ),
}

HOOK_SCHEMA = SectionSchema(
    name=GLOBAL_SECTION,
    fields=HOOK_FIELDS,
    description="Global hook execution settings",
)

FACTORY_SCHEMA = SectionSchema(
    name=FACTORY_SECTION,
    description="Service factory settings",
    fields={
        "enableServiceCaching": FieldSpec(
            "boolean", default=True,
            description="Enable caching of service instances",
        ),
        "maxCacheSize": FieldSpec(
            "number", default=50, min=1, max=1000,
            description="Maximum number of cached services",
        ),
        "cacheExpirationMs": FieldSpec(
            "number", default=1800000, min=60000, max=3600000,
            description="Service cache expiration time in milliseconds",
        ),
        "enableServicePooling": FieldSpec(
            "boolean", default=False,
            description="Enable service instance pooling",
        ),
        "maxPoolSize": FieldSpec(
            "number", default=10, min=1, max=100,
            description="Maximum pool size per service type",
        ),
        "poolIdleTimeout": FieldSpec(
            "number", default=600000, min=60000, max=3600000,
            description="Pool idle timeout in milliseconds",
        ),
        "enableServiceMetrics": FieldSpec(
            "boolean", default=True,
            description="Enable service performance metrics",
        ),
        "defaultHookConfig": FieldSpec(
            "object",
            default={name: spec.default for name, spec in HOOK_FIELDS.items()},
            properties=HOOK_FIELDS,
            description="Hook settings handed to newly created services",
        ),
    },
)

_HOOK_EVENTS = {
    "beforeCreate": True,
    "beforeUpdate": True,
    "afterCreate": True,
    "afterUpdate": True,
    "beforeDelete": False,
    "afterDelete": False,
}

CONTENT_TYPE_SCHEMA = SectionSchema(
    name=CONTENT_TYPE_SECTION,
    description="Per content type hook settings",
    fields={
        "enabled": FieldSpec(
            "boolean", default=True,
            description="Enable hooks for this content type",
        ),
        "hooks": FieldSpec(
            "object",
            default=dict(_HOOK_EVENTS),
            properties={
                name: FieldSpec("boolean", default=enabled, description=f"Enable {name} hook")
                for name, enabled in _HOOK_EVENTS.items()
            },
            additional_properties=False,
            description="Lifecycle hooks enabled for this content type",
        ),
        "validationRules": FieldSpec(
            "array", default=[], items=FieldSpec("string"),
            description="Validation rules to apply",
        ),
        "calculationRules": FieldSpec(
            "array", default=[], items=FieldSpec("string"),
            description="Calculation rules to apply",
        ),
        "customConfig": FieldSpec(
            "object", default={},
            description="Free-form settings for this content type",
        ),
    },
)

FEATURE_FLAGS_SCHEMA = SectionSchema(
    name=FEATURE_FLAGS_SECTION,
    description="Feature toggles for the hook system",
    fields={
        "enableHookMetrics": FieldSpec("boolean", default=True, description="Enable hook metrics collection"),
        "enableBackgroundJobs": FieldSpec("boolean", default=True, description="Enable background job processing"),
        "enableAdvancedValidation": FieldSpec("boolean", default=False, description="Enable advanced validation features"),
        "enableConfigurationUI": FieldSpec("boolean", default=False, description="Enable configuration management UI"),
        "enableHookProfiling": FieldSpec("boolean", default=False, description="Enable detailed hook profiling"),
        "enableAsyncValidation": FieldSpec("boolean", default=False, description="Enable asynchronous validation"),
        "enableValidationCaching": FieldSpec("boolean", default=True, description="Enable validation result caching"),
        "enableCalculationCaching": FieldSpec("boolean", default=True, description="Enable calculation result caching"),
        "enableHookChaining": FieldSpec("boolean", default=False, description="Enable hook chaining functionality"),
        "enableConditionalHooks": FieldSpec("boolean", default=False, description="Enable conditional hook execution"),
    },
)

BUILTIN_SCHEMAS = (HOOK_SCHEMA, FACTORY_SCHEMA, CONTENT_TYPE_SCHEMA, FEATURE_FLAGS_SCHEMA)


# Meta-schema for descriptor documents loaded from disk.
SCHEMA_DOCUMENT_META_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["name", "fields"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "pattern": r"^\d+\.\d+\.\d+$"},
        "description": {"type": "string"},
        "fields": {
            "type": "object",
            "additionalProperties": {"$ref": "#/definitions/field"},
        },
    },
    "additionalProperties": False,
    "definitions": {
        "field": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"enum": list(FIELD_TYPES)},
                "required": {"type": "boolean"},
                "default": {},
                "enum": {"type": "array"},
                "min": {"type": "number"},
                "max": {"type": "number"},
                "minLength": {"type": "integer", "minimum": 0},
                "maxLength": {"type": "integer", "minimum": 0},
                "pattern": {"type": "string"},
                "description": {"type": "string"},
                "deprecated": {"type": "boolean"},
                "version": {"type": "string"},
                "properties": {
                    "type": "object",
                    "additionalProperties": {"$ref": "#/definitions/field"},
                },
                "items": {"$ref": "#/definitions/field"},
                "additionalProperties": {"type": "boolean"},
            },
            "additionalProperties": False,
        }
    },
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SchemaRegistry:
    """
    Registry of section schemas used to validate configurations.

    The four built-in sections are always present. Additional sections can
    be registered programmatically or loaded from a directory of JSON
    descriptor documents.

    Attributes:
        schema_dir: Optional directory scanned for ``*.json`` descriptors.
    """

    def __init__(self, schema_dir: str | Path | None = None) -> None:
        """
        Initialize the schema registry.

        Args:
            schema_dir: Directory containing extra schema descriptor documents.
        """
        self.schema_dir = Path(schema_dir) if schema_dir else None
        self._schemas: Dict[str, SectionSchema] = {}

        for schema in BUILTIN_SCHEMAS:
            self.register(schema)

        if self.schema_dir is not None and self.schema_dir.exists():
            self.load_directory(self.schema_dir)

        logger.debug(f"SchemaRegistry initialized, schemas={self.list_schemas()}")

    def register(self, schema: SectionSchema, *, replace: bool = False) -> None:
        """
        Register a section schema.

        Args:
            schema: The schema to register.
            replace: Allow replacing an already registered schema.

        Raises:
            ValueError: If a schema with the same name exists and replace is False.
        """
        if schema.name in self._schemas and not replace:
            raise ValueError(f"Schema already registered: {schema.name}")
        self._schemas[schema.name] = schema
        logger.debug(f"Schema registered: {schema.name} v{schema.version}")

    def get_schema(self, name: str) -> SectionSchema:
        """
        Retrieve a section schema by name.

        Raises:
            SchemaNotFoundError: If no schema with that name is registered.
        """
        try:
            return self._schemas[name]
        except KeyError:
            raise SchemaNotFoundError(
                f"Schema not found: {name} (registered: {', '.join(self.list_schemas())})"
            ) from None

    def has_schema(self, name: str) -> bool:
        return name in self._schemas

    def list_schemas(self) -> list[str]:
        """List all registered schema names."""
        return sorted(self._schemas)

    def defaults(self, name: str) -> Dict[str, Any]:
        """Default values for every field of a section."""
        return self.get_schema(name).defaults()

    def to_json_schema(self, name: str) -> Dict[str, Any]:
        """Export a section schema as a Draft-7 JSON schema."""
        return self.get_schema(name).to_json_schema()

    def load_directory(self, directory: str | Path) -> list[str]:
        """
        Load every ``*.json`` schema descriptor in a directory.

        Args:
            directory: Directory to scan.

        Returns:
            Names of the schemas that were registered.

        Raises:
            SchemaValidationError: If a document cannot be read or fails
                the descriptor meta-schema.
        """
        loaded = []
        for path in sorted(Path(directory).glob("*.json")):
            if not path.is_file():
                continue
            schema = self.load_schema_document(path)
            self.register(schema, replace=True)
            loaded.append(schema.name)
        logger.info(f"Loaded {len(loaded)} schema document(s) from {directory}")
        return loaded

    def load_schema_document(self, path: str | Path) -> SectionSchema:
        """Read, check and parse a single schema descriptor document."""
        path = Path(path)
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SchemaValidationError(f"Failed to load schema {path.stem}: {e}") from e

        self.check_document(document, source=path.stem)
        return SectionSchema.from_dict(document)

    @staticmethod
    def check_document(document: Any, source: str = "(inline)") -> None:
        """
        Check a descriptor document against the meta-schema.

        Raises:
            SchemaValidationError: With details of all violations.
        """
        validator = jsonschema.Draft7Validator(SCHEMA_DOCUMENT_META_SCHEMA)
        errors = sorted(validator.iter_errors(document), key=lambda e: list(e.path))

        if errors:
            error_messages = []
            for error in errors:
                path = " -> ".join(str(p) for p in error.absolute_path) or "(root)"
                error_messages.append(f"  [{path}] {error.message}")

            all_errors = "\n".join(error_messages)
            raise SchemaValidationError(
                f"Schema document '{source}' is invalid "
                f"({len(errors)} error(s)):\n{all_errors}",
                errors=error_messages,
            )
