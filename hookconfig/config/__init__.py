"""
Configuration Management Module.

Handles the full life cycle of the hook configuration:
- Section schemas and validation with errors, warnings and suggestions.
- Version-aware migrations for older configuration formats.
- Multi-source loading (files, host, environment variables, defaults).
- Atomic persistence with backups, restore and export.
- Environment inheritance, runtime updates and deployments.
"""

from hookconfig.config.deployment import (
    DeploymentOrchestrator,
    DeploymentPlan,
    DeploymentState,
    DeploymentStatus,
    DeploymentTarget,
)
from hookconfig.config.errors import (
    CircularInheritanceError,
    ConfigurationError,
    DeploymentError,
    InheritanceError,
    MigrationError,
    PersistenceError,
    SchemaNotFoundError,
    SchemaValidationError,
)
from hookconfig.config.events import ChangeEventBus, ConfigurationChangeEvent, UpdateType
from hookconfig.config.inheritance import EnvironmentHierarchy, InheritanceEngine, InheritanceRule, RuleKind
from hookconfig.config.loader import ConfigLoader, ConfigSource, LoaderOptions
from hookconfig.config.model import SystemConfiguration, build_default_configuration
from hookconfig.config.persistence import ConfigPersistence, PersistenceOptions
from hookconfig.config.schema_registry import FieldSpec, SchemaRegistry, SectionSchema
from hookconfig.config.update_manager import UpdateManager
from hookconfig.config.validator import ConfigValidator, ValidationResult
from hookconfig.config.version_compat import Migration, VersionCompatManager, compare_versions

__all__ = [
    "ChangeEventBus",
    "CircularInheritanceError",
    "ConfigLoader",
    "ConfigPersistence",
    "ConfigSource",
    "ConfigValidator",
    "ConfigurationChangeEvent",
    "ConfigurationError",
    "DeploymentError",
    "DeploymentOrchestrator",
    "DeploymentPlan",
    "DeploymentState",
    "DeploymentStatus",
    "DeploymentTarget",
    "EnvironmentHierarchy",
    "FieldSpec",
    "InheritanceEngine",
    "InheritanceError",
    "InheritanceRule",
    "LoaderOptions",
    "Migration",
    "MigrationError",
    "PersistenceError",
    "PersistenceOptions",
    "RuleKind",
    "SchemaNotFoundError",
    "SchemaRegistry",
    "SchemaValidationError",
    "SectionSchema",
    "SystemConfiguration",
    "UpdateManager",
    "UpdateType",
    "ValidationResult",
    "VersionCompatManager",
    "build_default_configuration",
    "compare_versions",
]
