"""
Deployment Orchestrator Module.

Pushes one source configuration to several environment targets. Each
target gets its own resolved configuration (inheritance plus per-environment
overrides), which is validated, checked for a version upgrade against
what the target holds today, backed up and written. Targets are handled
strictly in order and the first failure stops the plan, except in dry
runs, which visit every target and write nothing.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from hookconfig.config.errors import ConfigurationError, DeploymentError
from hookconfig.config.inheritance import InheritanceEngine, InheritanceResult
from hookconfig.config.loader import read_config_file
from hookconfig.config.persistence import ConfigPersistence, PersistenceResult
from hookconfig.config.utils import clone, deep_merge, utc_now_iso
from hookconfig.config.validator import ConfigValidator, ValidationResult
from hookconfig.config.version_compat import MigrationResult, VersionCompatManager


STANDARD_ENVIRONMENTS = ("development", "staging", "production")


class DeploymentState(str, Enum):
    """Lifecycle of a deployment plan."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass
class DeploymentTarget:
    """One environment a plan deploys to."""

    environment: str
    config_path: str | Path
    validation_required: bool = True
    create_backup: bool = True
    requires_approval: bool = False

    def __post_init__(self) -> None:
        self.config_path = Path(self.config_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "configPath": str(self.config_path),
            "validationRequired": self.validation_required,
            "createBackup": self.create_backup,
            "requiresApproval": self.requires_approval,
        }


@dataclass
class DeploymentPlan:
    """A source configuration and the targets it goes to."""

    id: str
    configuration: Dict[str, Any]
    targets: List[DeploymentTarget]
    dry_run: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    description: Optional[str] = None
    source_environment: Optional[str] = None
    environment_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def target_environments(self) -> List[str]:
        return [target.environment for target in self.targets]


@dataclass
class PlanValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class DeploymentResult:
    """Outcome of deploying a plan to a single target."""

    plan_id: str
    environment: str
    config_path: Path
    success: bool = False
    timestamp: str = field(default_factory=utc_now_iso)
    configuration: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    inheritance: Optional[InheritanceResult] = None
    validation: Optional[ValidationResult] = None
    migration: Optional[MigrationResult] = None
    persistence: Optional[PersistenceResult] = None
    backup_path: Optional[Path] = None
    rollback_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "targetEnvironment": self.environment,
            "configPath": str(self.config_path),
            "success": self.success,
            "timestamp": self.timestamp,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "inheritanceResult": self.inheritance.to_dict() if self.inheritance else None,
            "validationResult": self.validation.to_dict() if self.validation else None,
            "migrationResult": self.migration.to_dict() if self.migration else None,
            "persistenceResult": self.persistence.to_dict() if self.persistence else None,
            "backupPath": str(self.backup_path) if self.backup_path else None,
            "rollbackAvailable": self.rollback_available,
        }


@dataclass
class DeploymentStatus:
    """Aggregate state and per-target results of a plan execution."""

    plan_id: str
    total_targets: int
    state: DeploymentState = DeploymentState.PENDING
    dry_run: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    results: List[DeploymentResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def successful_targets(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed_targets(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def is_partial(self) -> bool:
        """Completed, but not every target succeeded."""
        return self.state is DeploymentState.COMPLETED and self.successful_targets < self.total_targets

    def result_for(self, environment: str) -> Optional[DeploymentResult]:
        return next((r for r in self.results if r.environment == environment), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "status": self.state.value,
            "dryRun": self.dry_run,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "totalTargets": self.total_targets,
            "successfulTargets": self.successful_targets,
            "failedTargets": self.failed_targets,
            "errors": list(self.errors),
            "results": [result.to_dict() for result in self.results],
        }


class DeploymentOrchestrator:
    """
    Executes deployment plans across environment targets.

    Attributes:
        persistence: Writes and backs up target files.
        inheritance: Resolves each target's configuration.
        validator: Validates resolved configurations.
        version_manager: Checks upgrades of what targets hold today.
        environment_configs: Standing per-environment overrides used by every plan.

    Usage::

        orchestrator = DeploymentOrchestrator(persistence)
        plan = orchestrator.create_deployment_plan(
            config, orchestrator.create_standard_targets("config"), dry_run=True
        )
        status = orchestrator.execute_deployment_plan(plan)
        print(status.state, status.successful_targets)
    """

    def __init__(
        self,
        persistence: ConfigPersistence,
        *,
        inheritance: Optional[InheritanceEngine] = None,
        validator: Optional[ConfigValidator] = None,
        version_manager: Optional[VersionCompatManager] = None,
        environment_configs: Optional[Dict[str, Dict[str, Any]]] = None,
        base_name: str = "hooks",
    ) -> None:
        self.persistence = persistence
        self.inheritance = inheritance or InheritanceEngine()
        self.validator = validator or persistence.validator
        self.version_manager = version_manager or self.validator.version_manager
        self.environment_configs = clone(environment_configs or {})
        self.base_name = base_name
        self._statuses: Dict[str, DeploymentStatus] = {}
        self._history: List[str] = []

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_deployment_plan(
        self,
        configuration: Dict[str, Any],
        targets: List[DeploymentTarget],
        *,
        dry_run: bool = False,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
        approved_by: Optional[str] = None,
        source_environment: Optional[str] = None,
        environment_overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> DeploymentPlan:
        """Build a plan holding its own copy of the configuration."""
        plan = DeploymentPlan(
            id=f"deploy_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}",
            configuration=clone(configuration),
            targets=list(targets),
            dry_run=dry_run,
            created_by=created_by,
            approved_by=approved_by,
            description=description,
            source_environment=source_environment,
            environment_overrides=clone(environment_overrides or {}),
        )
        logger.info(
            f"[Deploy] Plan {plan.id} created for {', '.join(plan.target_environments)}"
            f"{' (dry run)' if dry_run else ''}"
        )
        return plan

    def validate_deployment_plan(self, plan: DeploymentPlan) -> PlanValidation:
        """
        Check a plan before execution without touching any target.

        Only the plan's shape blocks execution. Problems in the unresolved
        source configuration are reported as warnings; each target's
        resolved configuration is validated when it is deployed.
        """
        check = PlanValidation(is_valid=False)

        if not plan.targets:
            check.errors.append("Deployment plan has no targets")

        seen = set()
        for target in plan.targets:
            if target.environment in seen:
                check.errors.append(f"Duplicate deployment target: {target.environment}")
            seen.add(target.environment)
            if self.inheritance.get_environment_hierarchy(target.environment) is None:
                check.warnings.append(f"No inheritance hierarchy defined for environment: {target.environment}")
            if target.requires_approval and not plan.approved_by:
                check.warnings.append(f"Target {target.environment} requires approval")

        validation = self.validator.validate_system_configuration(plan.configuration)
        check.warnings.extend(f"Source configuration: {message}" for message in validation.error_messages)
        check.warnings.extend(validation.warning_messages)

        check.is_valid = not check.errors
        return check

    def execute_deployment_plan(self, plan: DeploymentPlan) -> DeploymentStatus:
        """
        Deploy a plan to its targets in order.

        Returns:
            DeploymentStatus: ``completed`` when at least one target succeeded
            (``is_partial`` tells whether all did), ``failed`` otherwise.
        """
        status = DeploymentStatus(plan_id=plan.id, total_targets=len(plan.targets), dry_run=plan.dry_run)
        self._statuses[plan.id] = status
        self._history.append(plan.id)

        check = self.validate_deployment_plan(plan)
        if not check.is_valid:
            status.errors.extend(check.errors)
            status.state = DeploymentState.FAILED
            status.completed_at = utc_now_iso()
            logger.error(f"[Deploy] Plan {plan.id} rejected: {'; '.join(check.errors)}")
            return status
        for warning in check.warnings:
            logger.warning(f"[Deploy] Plan {plan.id}: {warning}")

        status.state = DeploymentState.RUNNING
        status.started_at = utc_now_iso()
        logger.info(f"[Deploy] Executing plan {plan.id} ({status.total_targets} target(s))")

        env_configs = self._environment_configs(plan)
        for target in plan.targets:
            result = self._deploy_to_target(plan, target, env_configs)
            status.results.append(result)
            if result.success:
                logger.info(f"[Deploy] {target.environment}: OK")
                continue
            logger.error(f"[Deploy] {target.environment}: FAILED - {'; '.join(result.errors)}")
            if not plan.dry_run:
                break

        status.state = DeploymentState.COMPLETED if status.successful_targets > 0 else DeploymentState.FAILED
        status.completed_at = utc_now_iso()
        logger.info(
            f"[Deploy] Plan {plan.id} {status.state.value}: "
            f"{status.successful_targets}/{status.total_targets} target(s) succeeded"
        )
        return status

    def rollback_deployment(
        self, plan_id: str, environment: Optional[str] = None
    ) -> Dict[str, PersistenceResult]:
        """
        Restore the backups taken before a plan overwrote its targets.

        Args:
            plan_id: Executed plan to undo.
            environment: Only undo this target.

        Returns:
            Restore result per environment.

        Raises:
            DeploymentError: If the plan is unknown.
        """
        status = self._statuses.get(plan_id)
        if status is None:
            raise DeploymentError(f"Unknown deployment plan: {plan_id}")

        outcomes: Dict[str, PersistenceResult] = {}
        for result in status.results:
            if environment is not None and result.environment != environment:
                continue
            if not result.success or status.dry_run:
                continue
            if not result.rollback_available or result.backup_path is None:
                outcomes[result.environment] = PersistenceResult(
                    success=False,
                    file_path=result.config_path,
                    errors=[f"No backup available for {result.environment} in plan {plan_id}"],
                )
                continue
            outcomes[result.environment] = self.persistence.restore(result.backup_path, result.config_path)

        if outcomes and all(outcome.success for outcome in outcomes.values()):
            status.state = DeploymentState.ROLLED_BACK
            logger.info(f"[Deploy] Plan {plan_id} rolled back ({', '.join(outcomes)})")
        return outcomes

    def get_deployment_status(self, plan_id: str) -> Optional[DeploymentStatus]:
        return self._statuses.get(plan_id)

    def get_deployment_history(self, limit: int = 50) -> List[DeploymentStatus]:
        """Executed plans, newest first."""
        return [self._statuses[plan_id] for plan_id in reversed(self._history)][:limit]

    def create_standard_targets(
        self, config_dir: str | Path = "config", environments: tuple = STANDARD_ENVIRONMENTS
    ) -> List[DeploymentTarget]:
        """One target per environment at ``<config_dir>/<base>.<env>.json``."""
        config_dir = Path(config_dir)
        return [
            DeploymentTarget(
                environment=env,
                config_path=config_dir / f"{self.base_name}.{env}.json",
                requires_approval=env == "production",
            )
            for env in environments
        ]

    # ------------------------------------------------------------------
    # Private Helpers
    # ------------------------------------------------------------------

    def _environment_configs(self, plan: DeploymentPlan) -> Dict[str, Dict[str, Any]]:
        """
        Layer the per-environment overrides used for inheritance.

        Lowest to highest: the configuration's own ``environments`` block
        (as global settings), the orchestrator's standing overrides, the
        plan's overrides.
        """
        embedded = plan.configuration.get("environments")
        embedded = embedded if isinstance(embedded, dict) else {}
        names = set(embedded) | set(self.environment_configs) | set(plan.environment_overrides)

        configs: Dict[str, Dict[str, Any]] = {}
        for env in names:
            layered: Dict[str, Any] = {}
            if isinstance(embedded.get(env), dict) and embedded[env]:
                layered = {"global": clone(embedded[env])}
            for overrides in (self.environment_configs.get(env), plan.environment_overrides.get(env)):
                if overrides:
                    layered = deep_merge(layered, overrides)
            if layered:
                configs[env] = layered
        return configs

    def _deploy_to_target(
        self,
        plan: DeploymentPlan,
        target: DeploymentTarget,
        env_configs: Dict[str, Dict[str, Any]],
    ) -> DeploymentResult:
        result = DeploymentResult(plan_id=plan.id, environment=target.environment, config_path=target.config_path)

        if target.requires_approval and not plan.approved_by:
            if not plan.dry_run:
                result.errors.append(f"Deployment to {target.environment} requires approval")
                return result
            result.warnings.append(f"Deployment to {target.environment} requires approval")

        inheritance = self.inheritance.apply_inheritance(plan.configuration, target.environment, env_configs)
        result.inheritance = inheritance
        result.warnings.extend(inheritance.warnings)
        if not inheritance.success:
            result.errors.extend(inheritance.errors)
            return result

        config = inheritance.configuration
        # A target file carries only its own override block.
        embedded = config.get("environments")
        if isinstance(embedded, dict):
            config["environments"] = {env: block for env, block in embedded.items() if env == target.environment}
        metadata = config.setdefault("metadata", {})
        metadata["environment"] = target.environment
        metadata["deploymentId"] = plan.id

        if target.validation_required:
            validation = self.validator.validate_system_configuration(config)
            result.validation = validation
            result.warnings.extend(validation.warning_messages)
            if not validation.is_valid:
                result.errors.extend(validation.error_messages)
                return result

        migration = self._check_target_version(target, config, result)
        if migration is not None and not migration.success:
            result.errors.extend(migration.errors)
            return result

        result.configuration = config
        if plan.dry_run:
            result.success = True
            result.warnings.append("Dry run - configuration not saved")
            return result

        if target.create_backup:
            backup = self.persistence.create_backup(target.config_path, reason=f"Before deployment {plan.id}")
            result.warnings.extend(backup.warnings)
            if not backup.success:
                result.errors.extend(f"Backup failed: {error}" for error in backup.errors)
                return result
            result.backup_path = backup.backup_path

        saved = self.persistence.save(
            config,
            target.config_path,
            reason=f"Deployment {plan.id}",
            create_backup=False,
        )
        result.persistence = saved
        result.warnings.extend(saved.warnings)
        if not saved.success:
            result.errors.extend(saved.errors)
            return result

        result.configuration = saved.configuration
        result.rollback_available = result.backup_path is not None
        result.success = True
        return result

    def _check_target_version(
        self, target: DeploymentTarget, config: Dict[str, Any], result: DeploymentResult
    ) -> Optional[MigrationResult]:
        """Check that what the target holds today can be brought to the new version."""
        if not target.config_path.exists():
            return None
        try:
            stored = read_config_file(target.config_path)
        except ConfigurationError as e:
            result.warnings.append(f"Existing configuration at {target.config_path} is unreadable: {e}")
            return None

        stored_version = stored.get("version")
        new_version = config.get("version")
        if not isinstance(stored_version, str) or stored_version == new_version:
            return None

        migration = self.version_manager.migrate_configuration(stored, stored_version, new_version)
        result.migration = migration
        if migration.success:
            result.warnings.append(
                f"Target configuration will be upgraded from {stored_version} to {new_version}"
            )
        return migration
