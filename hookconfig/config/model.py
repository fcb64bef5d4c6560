"""
System configuration model.

The wire format of a configuration is a JSON-compatible dict with
camelCase keys. SystemConfiguration wraps that dict in a frozen value
that checks the structural invariants when it is built and hands out
independent copies, so a held snapshot can never change underneath its
owner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from hookconfig.config.errors import ConfigurationError
from hookconfig.config.schema_registry import (
    CONTENT_TYPE_SCHEMA,
    CURRENT_VERSION,
    FACTORY_SCHEMA,
    FEATURE_FLAGS_SCHEMA,
    HOOK_SCHEMA,
)
from hookconfig.config.utils import clone, utc_now_iso


_VERSION = re.compile(r"^\d+\.\d+\.\d+$")
_CONTENT_TYPE_NAME = re.compile(r"^[a-z][a-z0-9-]*$")


def _freeze(value: Any) -> Any:
    """Read-only view of a JSON-like value: mappings become proxies, lists tuples."""
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value

# Per-environment global overrides shipped with the built-in defaults.
DEFAULT_ENVIRONMENT_OVERRIDES: Dict[str, Dict[str, Any]] = {
    "development": {
        "logLevel": "debug",
        "enableStrictValidation": False,
    },
    "production": {
        "logLevel": "warn",
        "maxHookExecutionTime": 50,
    },
}


@dataclass(frozen=True)
class ConfigMetadata:
    """Bookkeeping attached to every configuration."""

    created_at: str
    updated_at: str
    environment: str
    updated_by: Optional[str] = None
    deployment_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigMetadata":
        now = utc_now_iso()
        return cls(
            created_at=data.get("createdAt", now),
            updated_at=data.get("updatedAt", now),
            environment=data.get("environment", "development"),
            updated_by=data.get("updatedBy"),
            deployment_id=data.get("deploymentId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "environment": self.environment,
        }
        if self.updated_by is not None:
            data["updatedBy"] = self.updated_by
        if self.deployment_id is not None:
            data["deploymentId"] = self.deployment_id
        return data


@dataclass(frozen=True)
class SystemConfiguration:
    """
    Immutable snapshot of a complete configuration.

    Build it with ``from_dict``; read it back with ``to_dict``. ``sections``
    is a read-only view all the way down; section accessors return copies.
    """

    version: str
    sections: Mapping[str, Any] = field(repr=False)
    metadata: ConfigMetadata

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemConfiguration":
        """
        Build a snapshot from its wire form.

        Raises:
            ConfigurationError: If the version or a content type name is malformed,
                or a section is not a mapping.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

        version = data.get("version")
        if not isinstance(version, str) or not _VERSION.match(version):
            raise ConfigurationError(f"Invalid configuration version: {version!r}")

        sections = {key: clone(value) for key, value in data.items() if key not in ("version", "metadata")}
        for name in ("global", "factory", "contentTypes", "environments", "featureFlags"):
            value = sections.setdefault(name, {})
            if not isinstance(value, dict):
                raise ConfigurationError(f"Section '{name}' must be a mapping, got {type(value).__name__}")

        bad_names = [name for name in sections["contentTypes"] if not _CONTENT_TYPE_NAME.match(str(name))]
        if bad_names:
            raise ConfigurationError(f"Invalid content type name(s): {', '.join(map(str, bad_names))}")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ConfigurationError("Section 'metadata' must be a mapping")

        return cls(version=version, sections=_freeze(sections), metadata=ConfigMetadata.from_dict(metadata))

    def section(self, name: str) -> Dict[str, Any]:
        """Copy of one section."""
        return _thaw(self.sections.get(name, {}))

    @property
    def environment(self) -> str:
        return self.metadata.environment

    def to_dict(self) -> Dict[str, Any]:
        """Independent wire-form copy of the whole configuration."""
        data: Dict[str, Any] = {"version": self.version}
        data.update(_thaw(self.sections))
        data["metadata"] = self.metadata.to_dict()
        return data


def build_default_configuration(environment: str = "development") -> Dict[str, Any]:
    """
    Build the built-in default configuration.

    Args:
        environment: Environment recorded in the metadata.

    Returns:
        A fresh configuration dict at the current version.
    """
    now = utc_now_iso()
    return {
        "version": CURRENT_VERSION,
        "global": HOOK_SCHEMA.defaults(),
        "factory": FACTORY_SCHEMA.defaults(),
        "contentTypes": {},
        "environments": clone(DEFAULT_ENVIRONMENT_OVERRIDES),
        "featureFlags": FEATURE_FLAGS_SCHEMA.defaults(),
        "metadata": {
            "createdAt": now,
            "updatedAt": now,
            "environment": environment,
        },
    }


def default_content_type_configuration() -> Dict[str, Any]:
    """Settings given to a content type that has no explicit configuration."""
    return CONTENT_TYPE_SCHEMA.defaults()
