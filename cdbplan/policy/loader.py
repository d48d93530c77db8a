"""Tier definition loader.

Turns a YAML document (or an already parsed mapping) into a validated
PlanDefinition. Everything is checked here so that no malformed tier ever
reaches the control plane:

  - shares must be a positive integer
  - utilization_limit and parallel_server_limit must be integers in [0, 100]
  - tier names must be unique (case-insensitive, they become profile names)
  - locked parameters must come from LOCKABLE_PARAMETERS, once per tier

Example document::

    plan:
      name: newcdb_plan
      comment: CDB resource plan
    tiers:
      gold:
        shares: 3
        utilization_limit: 60
        parallel_server_limit: 60
        locked_parameters: [DB_PERFORMANCE_PROFILE, MAX_IOPS]
    default_directive: {shares: 1, utilization_limit: 10, parallel_server_limit: 10}
    autotask_directive: {shares: 2, utilization_limit: 60}
    pdbs:
      mypdb1: gold
"""

import logging

import yaml

from cdbplan.models.errors import ValidationError
from cdbplan.models.types import (
    ALTER_SYSTEM, DEFAULT_PLAN_COMMENT, DEFAULT_PLAN_NAME, LOCKABLE_PARAMETERS,
    VALID_OPERATIONS, Directive, LockdownRule, PlanDefinition, Tier,
    is_identifier, lockdown_profile_name,
)

logger = logging.getLogger(__name__)

TOP_LEVEL_KEYS = {"plan", "tiers", "default_directive", "autotask_directive", "lockdown", "pdbs"}
TIER_KEYS = {"name", "shares", "utilization_limit", "parallel_server_limit", "locked_parameters"}
DIRECTIVE_KEYS = {"shares", "utilization_limit", "parallel_server_limit"}


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ValidationError(
                    f"duplicate key '{key}' at line {key_node.start_mark.line + 1}"
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_policy(path: str) -> PlanDefinition:
    """Read and validate a tier definition file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.load(f, Loader=UniqueKeyLoader)
    except OSError as exc:
        raise ValidationError(f"cannot read tier definition file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValidationError(f"invalid YAML in {path}: {exc}") from exc
    definition = parse_policy(raw or {})
    logger.info("Loaded %d tiers and %d lockdown rules from %s",
                len(definition.tiers), len(definition.rules), path)
    return definition


def load_policy_text(text: str) -> PlanDefinition:
    try:
        raw = yaml.load(text, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ValidationError(f"invalid YAML: {exc}") from exc
    return parse_policy(raw or {})


def parse_policy(raw: dict) -> PlanDefinition:
    """Validate a parsed document and build the PlanDefinition."""
    if not isinstance(raw, dict):
        raise ValidationError("tier definition must be a mapping")
    unknown = set(raw) - TOP_LEVEL_KEYS
    if unknown:
        raise ValidationError(f"unknown top-level keys: {sorted(unknown)}")

    plan = raw.get("plan") or {}
    if not isinstance(plan, dict):
        raise ValidationError("plan must be a mapping")
    plan_name = plan.get("name", DEFAULT_PLAN_NAME)
    if not is_identifier(plan_name):
        raise ValidationError(f"plan name '{plan_name}' is not a valid identifier")
    comment = plan.get("comment", DEFAULT_PLAN_COMMENT)
    if not isinstance(comment, str):
        raise ValidationError("plan comment must be a string", plan=plan_name)

    lockdown = raw.get("lockdown") or {}
    if not isinstance(lockdown, dict):
        raise ValidationError("lockdown must be a mapping", plan=plan_name)
    operation = _parse_operation(lockdown.get("restricted_operation", ALTER_SYSTEM), plan_name)

    tiers, rules = load_tiers(raw.get("tiers"), plan=plan_name, operation=operation)

    definition = PlanDefinition(name=plan_name, comment=comment, tiers=tiers, rules=rules)
    if "default_directive" in raw:
        definition.default_directive = parse_directive(
            raw["default_directive"], plan_name, "default", with_parallel=True,
        )
    if "autotask_directive" in raw:
        definition.autotask_directive = parse_directive(
            raw["autotask_directive"], plan_name, "autotask", with_parallel=False,
        )
    definition.pdb_assignments = _parse_pdbs(raw.get("pdbs") or {}, definition)
    return definition


def load_tiers(raw, plan: str = DEFAULT_PLAN_NAME, operation: str = ALTER_SYSTEM):
    """Validate tier entries. Returns (tiers, rules), both in declaration order."""
    entries = _tier_entries(raw, plan)
    tiers = []
    rules = []
    seen = set()
    for name, body in entries:
        if not is_identifier(name):
            raise ValidationError(f"tier name '{name}' is not a valid identifier", plan=plan)
        if name.lower() in seen:
            raise ValidationError("duplicate tier name", plan=plan, profile=name)
        seen.add(name.lower())
        if not isinstance(body, dict):
            raise ValidationError("tier definition must be a mapping", plan=plan, profile=name)
        unknown = set(body) - TIER_KEYS
        if unknown:
            raise ValidationError(f"unknown tier keys: {sorted(unknown)}", plan=plan, profile=name)
        for key in DIRECTIVE_KEYS:
            if key not in body:
                raise ValidationError(f"{key} is required", plan=plan, profile=name)

        tier = Tier(
            name=name,
            shares=_positive_int(body["shares"], "shares", plan, name),
            utilization_limit=_percentage(body["utilization_limit"], "utilization_limit", plan, name),
            parallel_server_limit=_percentage(body["parallel_server_limit"], "parallel_server_limit", plan, name),
        )
        tiers.append(tier)
        rules.extend(_parse_locked_parameters(body.get("locked_parameters") or [], tier, plan, operation))
    if not tiers:
        raise ValidationError("at least one tier is required", plan=plan)
    return tiers, rules


def parse_directive(raw, plan: str, directive: str, with_parallel: bool) -> Directive:
    if not isinstance(raw, dict):
        raise ValidationError("directive must be a mapping", plan=plan, directive=directive)
    allowed = DIRECTIVE_KEYS if with_parallel else DIRECTIVE_KEYS - {"parallel_server_limit"}
    unknown = set(raw) - allowed
    if unknown:
        raise ValidationError(f"unknown directive keys: {sorted(unknown)}", plan=plan, directive=directive)
    missing = [k for k in sorted(allowed) if k not in raw]
    if missing:
        raise ValidationError(f"missing directive keys: {missing}", plan=plan, directive=directive)
    return Directive(
        shares=_positive_int(raw["shares"], "shares", plan, None, directive),
        utilization_limit=_percentage(raw["utilization_limit"], "utilization_limit", plan, None, directive),
        parallel_server_limit=(
            _percentage(raw["parallel_server_limit"], "parallel_server_limit", plan, None, directive)
            if with_parallel else None
        ),
    )


def _tier_entries(raw, plan):
    if raw is None:
        raise ValidationError("tiers is required", plan=plan)
    if isinstance(raw, dict):
        return list(raw.items())
    if isinstance(raw, list):
        entries = []
        for item in raw:
            if not isinstance(item, dict) or "name" not in item:
                raise ValidationError("each tier in a list must be a mapping with a name", plan=plan)
            body = dict(item)
            entries.append((body.pop("name"), body))
        return entries
    raise ValidationError("tiers must be a mapping or a list", plan=plan)


def _parse_locked_parameters(raw, tier: Tier, plan: str, operation: str) -> list:
    if not isinstance(raw, list):
        raise ValidationError("locked_parameters must be a list", plan=plan, profile=tier.name)
    profile = lockdown_profile_name(tier.name)
    rules = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            raise ValidationError(f"locked parameter {item!r} must be a string", plan=plan, profile=profile)
        parameter = item.strip().upper()
        if parameter not in LOCKABLE_PARAMETERS:
            raise ValidationError(
                f"parameter must be one of {LOCKABLE_PARAMETERS}",
                plan=plan, profile=profile, rule=f"LOCK_{parameter}",
            )
        if parameter in seen:
            raise ValidationError("parameter locked twice", plan=plan, profile=profile, rule=f"LOCK_{parameter}")
        seen.add(parameter)
        rules.append(LockdownRule(profile=profile, parameter=parameter, operation=operation))
    return rules


def _parse_operation(value, plan: str) -> str:
    operation = value.strip().upper() if isinstance(value, str) else value
    if operation not in VALID_OPERATIONS:
        raise ValidationError(f"restricted_operation must be one of {VALID_OPERATIONS}", plan=plan)
    return operation


def _parse_pdbs(raw, definition: PlanDefinition) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("pdbs must be a mapping of PDB name to tier", plan=definition.name)
    assignments = {}
    for pdb, tier_name in raw.items():
        if not is_identifier(pdb):
            raise ValidationError(f"PDB name '{pdb}' is not a valid identifier", plan=definition.name)
        tier = definition.get_tier(tier_name) if isinstance(tier_name, str) else None
        if tier is None:
            raise ValidationError(f"PDB '{pdb}' references unknown tier '{tier_name}'", plan=definition.name)
        assignments[pdb] = tier.name
    return assignments


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _positive_int(value, field_name, plan, profile, directive=None) -> int:
    if not _is_int(value) or value <= 0:
        raise ValidationError(
            f"{field_name} must be a positive integer, got {value!r}",
            plan=plan, profile=profile, directive=directive,
        )
    return value


def _percentage(value, field_name, plan, profile, directive=None) -> int:
    if not _is_int(value) or value < 0 or value > 100:
        raise ValidationError(
            f"{field_name} must be an integer between 0 and 100, got {value!r}",
            plan=plan, profile=profile, directive=directive,
        )
    return value
