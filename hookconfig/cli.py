#!/usr/bin/env python
"""
Hook Configuration Command Line.

Operational front end for validating, migrating, backing up, restoring,
comparing, exporting and deploying hook configuration files.

Usage:
    hookconfig validate config/hooks.json
    hookconfig deploy config/hooks.json development staging --dry-run
    hookconfig backup config/hooks.production.json --reason "Before tuning"
    hookconfig restore config/backups/hooks.production_2026-01-01T00-00-00-000000Z.backup.json
    hookconfig diff config/hooks.staging.json config/hooks.production.json
    hookconfig migrate config/hooks.json --to 1.0.0
    hookconfig list-backups
    hookconfig export config/hooks.json --format env
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from hookconfig import __version__
from hookconfig.config.deployment import DeploymentOrchestrator
from hookconfig.config.errors import ConfigurationError
from hookconfig.config.inheritance import InheritanceEngine
from hookconfig.config.loader import read_config_file
from hookconfig.config.persistence import EXPORT_FORMATS, ConfigPersistence, PersistenceOptions
from hookconfig.config.validator import ConfigValidator


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="hookconfig",
        description="Hook configuration management",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--backup-dir",
        type=str,
        default="config/backups",
        help="Directory holding configuration backups (default: config/backups)",
    )
    parser.add_argument(
        "--max-backups",
        type=int,
        default=10,
        help="Number of backups kept per file (default: 10)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", help="Validate a configuration file")
    validate.add_argument("file", help="Configuration file (JSON or YAML)")

    deploy = commands.add_parser("deploy", help="Deploy a configuration to environments")
    deploy.add_argument("file", help="Source configuration file")
    deploy.add_argument("environments", nargs="+", help="Target environments")
    deploy.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory of the target files hooks.<env>.json (default: config)",
    )
    deploy.add_argument("--dry-run", action="store_true", help="Resolve and validate without writing")
    deploy.add_argument("--approved-by", type=str, default=None, help="Approver for protected targets")
    deploy.add_argument("--hierarchies", type=str, default=None, help="YAML file of inheritance hierarchies")

    backup = commands.add_parser("backup", help="Back up a configuration file")
    backup.add_argument("file", help="Configuration file to back up")
    backup.add_argument("--reason", type=str, default="Manual backup", help="Reason stored in the backup")

    restore = commands.add_parser("restore", help="Restore a backup")
    restore.add_argument("backup", help="Backup file")
    restore.add_argument("--target", type=str, default=None, help="Restore to this file instead of the original")

    verify = commands.add_parser("verify-backup", help="Check a backup's integrity")
    verify.add_argument("backup", help="Backup file")

    diff = commands.add_parser("diff", help="Compare two configuration files")
    diff.add_argument("left", help="First configuration file")
    diff.add_argument("right", help="Second configuration file")

    migrate = commands.add_parser("migrate", help="Migrate a configuration file to another version")
    migrate.add_argument("file", help="Configuration file to migrate")
    migrate.add_argument("--to", dest="to_version", type=str, default=None, help="Target version (default: latest)")
    migrate.add_argument("--output", type=str, default=None, help="Write here instead of over the input file")

    list_backups = commands.add_parser("list-backups", help="List backups, newest first")
    list_backups.add_argument("--file", type=str, default=None, help="Only backups of this file")

    export = commands.add_parser("export", help="Export a configuration in another format")
    export.add_argument("file", help="Configuration file")
    export.add_argument("--format", choices=EXPORT_FORMATS, default="json", help="Export format (default: json)")
    export.add_argument("--output", type=str, default=None, help="Output file (default: stdout)")

    schema = commands.add_parser("schema", help="Print a section schema as JSON Schema")
    schema.add_argument("name", help="Section name (global, factory, contentType, featureFlags)")

    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load(path: str) -> Dict[str, Any]:
    return read_config_file(Path(path))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_validate(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    result = persistence.validator.validate_system_configuration(_load(args.file))
    for error in result.errors:
        logger.error(f"[Validate] {error.field}: {error.message} ({error.code})")
    for warning in result.warnings:
        logger.warning(f"[Validate] {warning.field}: {warning.message}")
    for suggestion in result.suggestions:
        logger.info(f"[Validate] {suggestion.field}: {suggestion.message} (suggested: {suggestion.suggested_value})")
    _print_json(result.to_dict())
    logger.info(f"[Validate] {args.file}: {'valid' if result.is_valid else 'INVALID'}")
    return 0 if result.is_valid else 1


def cmd_deploy(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    inheritance = InheritanceEngine()
    if args.hierarchies:
        inheritance.load_hierarchies(args.hierarchies)
    orchestrator = DeploymentOrchestrator(persistence, inheritance=inheritance)
    targets = orchestrator.create_standard_targets(args.config_dir, tuple(args.environments))
    plan = orchestrator.create_deployment_plan(
        _load(args.file),
        targets,
        dry_run=args.dry_run,
        approved_by=args.approved_by,
        description=f"CLI deployment of {args.file}",
    )
    status = orchestrator.execute_deployment_plan(plan)
    _print_json(status.to_dict())
    return 0 if status.failed_targets == 0 and not status.errors else 1


def cmd_backup(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    result = persistence.create_backup(args.file, reason=args.reason)
    _print_json(result.to_dict())
    if result.success and result.backup_path is None:
        logger.warning(f"[Backup] Nothing to back up at {args.file}")
    return 0 if result.success else 1


def cmd_restore(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    result = persistence.restore(args.backup, args.target)
    _print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_verify_backup(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    verification = persistence.verify_backup(args.backup)
    _print_json({
        "isValid": verification.is_valid,
        "backupPath": str(verification.backup_path),
        "errors": verification.errors,
        "warnings": verification.warnings,
        "metadata": verification.metadata.to_dict() if verification.metadata else None,
    })
    return 0 if verification.is_valid else 1


def cmd_diff(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    diff = InheritanceEngine.compare_configurations(_load(args.left), _load(args.right))
    _print_json(diff.to_dict())
    return 0


def cmd_migrate(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    config = _load(args.file)
    version_manager = persistence.validator.version_manager
    from_version = config.get("version")
    if not isinstance(from_version, str):
        logger.error(f"[Migrate] {args.file} declares no version")
        return 1
    to_version = args.to_version or version_manager.get_latest_version()

    result = version_manager.migrate_configuration(config, from_version, to_version)
    if not result.success:
        for error in result.errors:
            logger.error(f"[Migrate] {error}")
        _print_json(result.to_dict())
        return 1

    output = args.output or args.file
    saved = persistence.save(result.migrated_config, output, reason=f"Migration {from_version} -> {to_version}")
    _print_json({**result.to_dict(), "output": saved.to_dict()})
    return 0 if saved.success else 1


def cmd_list_backups(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    backups = persistence.list_backups(args.file)
    _print_json([backup.to_dict() for backup in backups])
    logger.info(f"[Backups] {len(backups)} backup(s) in {persistence.backup_dir}")
    return 0


def cmd_export(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    config = _load(args.file)
    if args.output is None:
        sys.stdout.write(persistence.render_export(config, args.format))
        return 0
    result = persistence.export(config, args.format, args.output)
    return 0 if result.success else 1


def cmd_schema(args: argparse.Namespace, persistence: ConfigPersistence) -> int:
    _print_json(persistence.validator.registry.to_json_schema(args.name))
    return 0


COMMANDS = {
    "validate": cmd_validate,
    "deploy": cmd_deploy,
    "backup": cmd_backup,
    "restore": cmd_restore,
    "verify-backup": cmd_verify_backup,
    "diff": cmd_diff,
    "migrate": cmd_migrate,
    "list-backups": cmd_list_backups,
    "export": cmd_export,
    "schema": cmd_schema,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the hookconfig command."""
    args = parse_args(argv)
    configure_logging(args.verbose)

    persistence = ConfigPersistence(
        PersistenceOptions(backup_dir=args.backup_dir, max_backups=args.max_backups),
        validator=ConfigValidator(),
    )
    try:
        return COMMANDS[args.command](args, persistence)
    except ConfigurationError as e:
        logger.error(f"[{args.command}] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
