"""
Configuration error hierarchy.

Every error raised by the configuration core derives from
ConfigurationError, so callers can catch the whole family at once.
Operation-level APIs report failures through result objects; these
exceptions escape only for programmer errors.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when a configuration is invalid or cannot be processed."""

    pass


class SchemaValidationError(ConfigurationError):
    """Raised when a schema document fails its meta-schema."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class SchemaNotFoundError(ConfigurationError, KeyError):
    """Raised when a schema name is not registered."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class MigrationError(ConfigurationError):
    """Raised when no migration path exists or a migration step fails."""

    pass


class PersistenceError(ConfigurationError):
    """Raised when a configuration or backup cannot be written or read."""

    pass


class InheritanceError(ConfigurationError):
    """Raised when environment inheritance cannot be resolved."""

    pass


class CircularInheritanceError(InheritanceError):
    """Raised when an environment hierarchy contains a cycle."""

    def __init__(self, environment: str, path: list[str] | None = None) -> None:
        self.environment = environment
        self.path = path or []
        chain = " -> ".join(self.path + [environment])
        super().__init__(
            f"Circular inheritance detected for environment: {environment}"
            + (f" ({chain})" if self.path else "")
        )


class DeploymentError(ConfigurationError):
    """Raised when a deployment plan is malformed or cannot be executed."""

    pass
