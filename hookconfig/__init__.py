"""
Hook Configuration Core Package.

This package contains the core logic for:
- Configuration: Schema-validated, versioned hook configuration.
- Persistence: Atomic saves, backups and restore.
- Environments: Inheritance between deployment environments.
- Runtime: Validated updates with rollback and multi-environment deployment.
"""

__version__ = "0.1.0"
