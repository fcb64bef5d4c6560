"""
Environment Inheritance Engine.

Environments form a hierarchy (test inherits from development, which
inherits from staging, which inherits from production). Resolving an
environment walks its ancestor chain root first and applies each
environment's overrides through field-level rules: override, merge,
append or ignore. Field paths are dotted and may contain a ``*`` segment
that matches every key at that level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import jsonschema
import yaml
from loguru import logger

from hookconfig.config.errors import CircularInheritanceError, InheritanceError
from hookconfig.config.utils import (
    clone,
    deep_merge,
    get_path,
    has_path,
    set_path,
    split_path,
    utc_now_iso,
    walk_differences,
)


# (source_value, target_value) -> apply?
RuleCondition = Callable[[Any, Any], bool]


class RuleKind(str, Enum):
    """How an environment's value is combined with the inherited one."""

    OVERRIDE = "override"
    MERGE = "merge"
    APPEND = "append"
    IGNORE = "ignore"


@dataclass(frozen=True)
class InheritanceRule:
    """Combination rule for one field path."""

    field: str
    rule: RuleKind
    priority: int = 0
    condition: Optional[RuleCondition] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InheritanceRule":
        return cls(field=data["field"], rule=RuleKind(data["rule"]), priority=data.get("priority", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "rule": self.rule.value, "priority": self.priority}


@dataclass
class EnvironmentHierarchy:
    """Parents and rules of one environment."""

    environment: str
    inherits_from: List[str] = field(default_factory=list)
    rules: List[InheritanceRule] = field(default_factory=list)
    priority: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvironmentHierarchy":
        return cls(
            environment=data["environment"],
            inherits_from=list(data.get("inheritsFrom", [])),
            rules=[InheritanceRule.from_dict(rule) for rule in data.get("rules", [])],
            priority=data.get("priority", 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "inheritsFrom": list(self.inherits_from),
            "rules": [rule.to_dict() for rule in self.rules],
            "priority": self.priority,
        }


@dataclass
class InheritanceResult:
    """Outcome of resolving an environment's configuration."""

    success: bool
    configuration: Dict[str, Any]
    inheritance_chain: List[str] = field(default_factory=list)
    applied_rules: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "inheritanceChain": list(self.inheritance_chain),
            "appliedRules": list(self.applied_rules),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class InheritanceValidation:
    is_valid: bool
    chain: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ConfigurationDiff:
    """Leaf-level differences between two configurations."""

    added: Dict[str, Any] = field(default_factory=dict)
    removed: Dict[str, Any] = field(default_factory=dict)
    changed: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)

    @property
    def is_identical(self) -> bool:
        return not (self.added or self.removed or self.changed)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "changed": len(self.changed),
            "total": len(self.added) + len(self.removed) + len(self.changed),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": clone(self.added),
            "removed": clone(self.removed),
            "changed": {path: {"from": old, "to": new} for path, (old, new) in self.changed.items()},
            "summary": self.summary,
        }


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def _rules(*specs: Tuple[str, RuleKind, int]) -> List[InheritanceRule]:
    return [InheritanceRule(field=path, rule=kind, priority=priority) for path, kind, priority in specs]


DEFAULT_RULES: List[InheritanceRule] = _rules(
    ("global", RuleKind.MERGE, 1),
    ("factory", RuleKind.MERGE, 1),
    ("contentTypes", RuleKind.MERGE, 1),
    ("featureFlags", RuleKind.MERGE, 1),
    ("metadata", RuleKind.MERGE, 1),
    ("version", RuleKind.OVERRIDE, 2),
    ("metadata.environment", RuleKind.OVERRIDE, 2),
    ("metadata.updatedAt", RuleKind.OVERRIDE, 2),
)


def default_hierarchies() -> List[EnvironmentHierarchy]:
    """Built-in chain: test -> development -> staging -> production."""
    return [
        EnvironmentHierarchy(
            environment="production",
            priority=1,
            rules=_rules(
                ("global.logLevel", RuleKind.OVERRIDE, 1),
                ("global.enableStrictValidation", RuleKind.OVERRIDE, 1),
                ("global.maxHookExecutionTime", RuleKind.OVERRIDE, 1),
                ("featureFlags", RuleKind.MERGE, 2),
                ("contentTypes", RuleKind.MERGE, 2),
            ),
        ),
        EnvironmentHierarchy(
            environment="staging",
            inherits_from=["production"],
            priority=2,
            rules=_rules(
                ("global.logLevel", RuleKind.OVERRIDE, 1),
                ("global.enableBackgroundJobs", RuleKind.OVERRIDE, 1),
                ("featureFlags.enableConfigurationUI", RuleKind.OVERRIDE, 1),
                ("contentTypes.*.customConfig", RuleKind.MERGE, 2),
            ),
        ),
        EnvironmentHierarchy(
            environment="development",
            inherits_from=["staging"],
            priority=3,
            rules=_rules(
                ("global.logLevel", RuleKind.OVERRIDE, 1),
                ("global.maxHookExecutionTime", RuleKind.OVERRIDE, 1),
                ("global.enableBackgroundJobs", RuleKind.OVERRIDE, 1),
                ("featureFlags", RuleKind.MERGE, 2),
                ("contentTypes.*.customConfig.enableDebugLogging", RuleKind.OVERRIDE, 2),
            ),
        ),
        EnvironmentHierarchy(
            environment="test",
            inherits_from=["development"],
            priority=4,
            rules=_rules(
                ("global.logLevel", RuleKind.OVERRIDE, 1),
                ("global.enableStrictValidation", RuleKind.OVERRIDE, 1),
                ("global.enableMetrics", RuleKind.OVERRIDE, 1),
                ("global.enableCaching", RuleKind.OVERRIDE, 1),
                ("factory.enableServiceCaching", RuleKind.OVERRIDE, 1),
                ("featureFlags", RuleKind.OVERRIDE, 2),
            ),
        ),
    ]


HIERARCHY_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["hierarchies"],
    "properties": {
        "hierarchies": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["environment"],
                "properties": {
                    "environment": {"type": "string", "minLength": 1},
                    "inheritsFrom": {"type": "array", "items": {"type": "string"}},
                    "priority": {"type": "integer"},
                    "rules": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["field", "rule"],
                            "properties": {
                                "field": {"type": "string", "minLength": 1},
                                "rule": {"enum": [kind.value for kind in RuleKind]},
                                "priority": {"type": "integer"},
                            },
                            "additionalProperties": False,
                        },
                    },
                },
                "additionalProperties": False,
            },
        }
    },
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class InheritanceEngine:
    """
    Resolves environment configurations through their inheritance chain.

    Usage::

        engine = InheritanceEngine()
        result = engine.apply_inheritance(base, "development", {
            "production": {"global": {"logLevel": "warn"}},
            "development": {"global": {"logLevel": "debug"}},
        })
        result.configuration["global"]["logLevel"]  # "debug"
    """

    def __init__(
        self,
        hierarchies: Optional[Iterable[EnvironmentHierarchy]] = None,
        default_rules: Optional[List[InheritanceRule]] = None,
    ) -> None:
        """
        Args:
            hierarchies: Environment hierarchies. Defaults to the built-in chain.
            default_rules: Rules used for chain members without a hierarchy.
        """
        self._hierarchies: Dict[str, EnvironmentHierarchy] = {}
        self.default_rules = list(default_rules if default_rules is not None else DEFAULT_RULES)
        for hierarchy in (hierarchies if hierarchies is not None else default_hierarchies()):
            self.add_environment_hierarchy(hierarchy)

    # ------------------------------------------------------------------
    # Hierarchies
    # ------------------------------------------------------------------

    def add_environment_hierarchy(self, hierarchy: EnvironmentHierarchy) -> None:
        """Register or replace the hierarchy of an environment."""
        self._hierarchies[hierarchy.environment] = hierarchy
        logger.debug(
            f"Inheritance hierarchy set: {hierarchy.environment} "
            f"<- {', '.join(hierarchy.inherits_from) or '(root)'}"
        )

    def get_environment_hierarchy(self, environment: str) -> Optional[EnvironmentHierarchy]:
        return self._hierarchies.get(environment)

    def get_all_hierarchies(self) -> List[EnvironmentHierarchy]:
        """All hierarchies ordered by priority."""
        return sorted(self._hierarchies.values(), key=lambda h: h.priority)

    def load_hierarchies(self, path: str | Path) -> List[str]:
        """
        Register hierarchies from a YAML document.

        Raises:
            InheritanceError: If the file is unreadable or malformed.
        """
        path = Path(path)
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise InheritanceError(f"Failed to load hierarchies from {path}: {e}") from e

        validator = jsonschema.Draft7Validator(HIERARCHY_DOCUMENT_SCHEMA)
        problems = sorted(validator.iter_errors(document), key=lambda e: list(e.path))
        if problems:
            details = "; ".join(
                f"[{' -> '.join(str(p) for p in error.absolute_path) or '(root)'}] {error.message}"
                for error in problems
            )
            raise InheritanceError(f"Invalid hierarchy document {path}: {details}")

        loaded = []
        for entry in document["hierarchies"]:
            hierarchy = EnvironmentHierarchy.from_dict(entry)
            self.add_environment_hierarchy(hierarchy)
            loaded.append(hierarchy.environment)
        logger.info(f"Loaded {len(loaded)} inheritance hierarchies from {path}")
        return loaded

    def build_inheritance_chain(self, environment: str) -> List[str]:
        """
        Order an environment's ancestors root first, ending with the environment.

        An environment reachable through several parents appears once.

        Raises:
            CircularInheritanceError: If an environment is reached again while
                its own ancestors are still being resolved.
        """
        chain: List[str] = []
        visiting: List[str] = []
        done = set()

        def visit(env: str) -> None:
            if env in visiting:
                raise CircularInheritanceError(env, list(visiting))
            if env in done:
                return
            visiting.append(env)
            hierarchy = self._hierarchies.get(env)
            for parent in hierarchy.inherits_from if hierarchy else []:
                visit(parent)
            visiting.pop()
            done.add(env)
            chain.append(env)

        visit(environment)
        return chain

    def validate_inheritance(self, environment: str) -> InheritanceValidation:
        """Check that an environment's chain is acyclic and fully defined."""
        validation = InheritanceValidation(is_valid=False)
        if environment not in self._hierarchies:
            validation.errors.append(f"No inheritance hierarchy defined for environment: {environment}")
            return validation

        try:
            validation.chain = self.build_inheritance_chain(environment)
        except CircularInheritanceError as e:
            validation.errors.append(str(e))
            return validation

        for env in validation.chain:
            if env not in self._hierarchies:
                validation.warnings.append(
                    f"Environment '{env}' has no hierarchy, default rules apply"
                )
        validation.is_valid = True
        return validation

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def apply_inheritance(
        self,
        base: Dict[str, Any],
        environment: str,
        environment_configs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> InheritanceResult:
        """
        Resolve a configuration for an environment.

        Args:
            base: Starting configuration. Not modified.
            environment: Environment to resolve.
            environment_configs: Partial configuration per environment.

        Returns:
            InheritanceResult with the resolved copy. Rule failures are
            reported as errors; the other rules are still applied.
        """
        environment_configs = environment_configs or {}
        result = InheritanceResult(success=False, configuration=clone(base))

        if environment not in self._hierarchies:
            result.success = True
            result.inheritance_chain = [environment]
            result.warnings.append(f"No inheritance hierarchy defined for environment: {environment}")
            return result

        try:
            result.inheritance_chain = self.build_inheritance_chain(environment)
        except InheritanceError as e:
            result.errors.append(str(e))
            return result

        config = result.configuration
        for chain_env in result.inheritance_chain:
            env_config = environment_configs.get(chain_env)
            if not env_config:
                continue
            hierarchy = self._hierarchies.get(chain_env)
            rules = hierarchy.rules if hierarchy is not None else self.default_rules
            for rule in sorted(rules, key=lambda r: r.priority):
                try:
                    applied = self._apply_rule(config, env_config, rule)
                except InheritanceError as e:
                    result.errors.append(f"{chain_env}: {e}")
                    continue
                result.applied_rules.extend(f"{chain_env}:{path}:{rule.rule.value}" for path in applied)

        metadata = config.setdefault("metadata", {})
        if isinstance(metadata, dict):
            metadata["environment"] = environment
            metadata["updatedAt"] = utc_now_iso()

        result.success = not result.errors
        logger.debug(
            f"Inheritance resolved for '{environment}' via {' -> '.join(result.inheritance_chain)}, "
            f"{len(result.applied_rules)} rule(s) applied"
        )
        return result

    def get_effective_configuration(
        self,
        base: Dict[str, Any],
        environment: str,
        environment_configs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Resolved configuration for an environment.

        Raises:
            InheritanceError: If resolution reports any error.
        """
        result = self.apply_inheritance(base, environment, environment_configs)
        if not result.success:
            raise InheritanceError(
                f"Failed to resolve configuration for {environment}: {'; '.join(result.errors)}"
            )
        return result.configuration

    @staticmethod
    def compare_configurations(left: Dict[str, Any], right: Dict[str, Any]) -> ConfigurationDiff:
        """Leaf-level differences going from ``left`` to ``right``."""
        diff = ConfigurationDiff()
        for kind, path, old, new in walk_differences(left, right):
            if kind == "added":
                diff.added[path] = clone(new)
            elif kind == "removed":
                diff.removed[path] = clone(old)
            else:
                diff.changed[path] = (clone(old), clone(new))
        return diff

    # ------------------------------------------------------------------
    # Private Helpers
    # ------------------------------------------------------------------

    def _apply_rule(
        self, target: Dict[str, Any], source: Dict[str, Any], rule: InheritanceRule
    ) -> List[str]:
        """Apply one rule at every path it matches in ``source``. Returns those paths."""
        if rule.rule is RuleKind.IGNORE:
            return []

        applied = []
        for path in self._expand(source, split_path(rule.field)):
            source_value = get_path(source, path)
            target_value = get_path(target, path)
            if rule.condition is not None and not rule.condition(source_value, target_value):
                continue

            if rule.rule is RuleKind.OVERRIDE:
                set_path(target, path, clone(source_value))
            elif rule.rule is RuleKind.MERGE:
                if isinstance(source_value, dict) and isinstance(target_value, dict):
                    set_path(target, path, deep_merge(target_value, source_value))
                else:
                    set_path(target, path, clone(source_value))
            elif rule.rule is RuleKind.APPEND:
                if not has_path(target, path):
                    target_value = []
                if not isinstance(source_value, list) or not isinstance(target_value, list):
                    raise InheritanceError(f"Cannot append non-array values at {path}")
                set_path(target, path, clone(target_value) + clone(source_value))
            applied.append(path)
        return applied

    @classmethod
    def _expand(cls, data: Any, segments: List[str], prefix: Tuple[str, ...] = ()) -> List[str]:
        """Concrete dotted paths in ``data`` matching ``segments`` (``*`` matches any key)."""
        if not segments:
            return [".".join(prefix)] if prefix else []
        if not isinstance(data, dict):
            return []
        head, rest = segments[0], segments[1:]
        if head == "*":
            keys = list(data)
        elif head in data:
            keys = [head]
        else:
            return []
        paths: List[str] = []
        for key in keys:
            paths.extend(cls._expand(data[key], rest, prefix + (str(key),)))
        return paths
