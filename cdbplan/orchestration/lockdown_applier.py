"""Lockdown applier: one lockdown profile per tier, one rule per locked parameter.

Existing profiles are handled explicitly:
  replace=False: keep the profile, add only the rules it is missing; rules
                 the definition does not declare stay in place and are
                 listed as "undeclared" (drift keeps reporting them)
  replace=True : drop the profile and recreate it from the definition, which
                 is the only way undeclared rules are removed

A rule for a parameter that is already locked is never added twice: with
the same restricted operation it is left alone, with a different one the
applier raises DuplicateRuleError unless replace is set.
"""

import logging

from cdbplan.db.database import append_audit_log
from cdbplan.models.errors import DuplicateRuleError, ValidationError
from cdbplan.models.types import (
    ALTER_SYSTEM, LOCKABLE_PARAMETERS, VALID_OPERATIONS, LockdownRule, PlanDefinition,
)

logger = logging.getLogger(__name__)


class LockdownApplier:
    def __init__(self, catalog, replace: bool = False, record: bool = True, run_id: int = None):
        self.catalog = catalog
        self.replace = replace
        self.record = record
        self.run_id = run_id

    def apply(self, definition: PlanDefinition) -> dict:
        result = {"profiles": {}, "replace": self.replace}
        for profile in definition.lockdown_profiles:
            rules = definition.rules_for(profile)
            action = self.ensure_profile(profile)
            summary = {"action": action, "added": [], "unchanged": [], "undeclared": []}
            existing = {r.parameter: r for r in self.catalog.list_rules(profile)}
            for rule in rules:
                current = existing.get(rule.parameter)
                if current is None:
                    self._add(rule)
                    summary["added"].append(rule.rule_name)
                elif current.operation == rule.operation:
                    summary["unchanged"].append(rule.rule_name)
                else:
                    raise DuplicateRuleError(
                        f"parameter already locked for {current.operation}, "
                        f"refusing to add it for {rule.operation} without replace",
                        plan=definition.name, profile=profile, rule=rule.rule_name,
                    )
            declared = {r.parameter for r in rules}
            summary["undeclared"] = sorted(r.rule_name for r in existing.values() if r.parameter not in declared)
            if summary["undeclared"]:
                logger.warning("Lockdown profile %s keeps undeclared rules %s; apply with replace to remove them",
                               profile, summary["undeclared"])
            result["profiles"][profile] = summary
            logger.info("Lockdown profile %s %s: %d rules added, %d unchanged",
                        profile, action, len(summary["added"]), len(summary["unchanged"]))
        return result

    def ensure_profile(self, profile: str) -> str:
        """Create ``profile`` if missing. Returns 'created', 'kept' or 'replaced'."""
        if not self.catalog.profile_exists(profile):
            self.catalog.create_profile(profile)
            self._audit("create_profile", profile)
            return "created"
        if not self.replace:
            return "kept"
        self.catalog.drop_profile(profile)
        self.catalog.create_profile(profile)
        self._audit("replace_profile", profile)
        return "replaced"

    def add_rule(self, profile: str, parameter: str, operation: str = ALTER_SYSTEM,
                 replace: bool = False) -> LockdownRule:
        """Lock one parameter in an existing profile."""
        parameter = parameter.upper()
        if parameter not in LOCKABLE_PARAMETERS:
            raise ValidationError(f"parameter must be one of {LOCKABLE_PARAMETERS}",
                                  profile=profile, rule=f"LOCK_{parameter}")
        if operation not in VALID_OPERATIONS:
            raise ValidationError(f"restricted operation must be one of {VALID_OPERATIONS}",
                                  profile=profile, rule=f"LOCK_{parameter}")
        rule = LockdownRule(profile=profile, parameter=parameter, operation=operation)
        existing = [r for r in self.catalog.list_rules(profile) if r.parameter == parameter]
        if existing and not replace:
            raise DuplicateRuleError("parameter is already locked", profile=profile, rule=rule.rule_name)
        for old in existing:
            self.catalog.remove_rule(profile, old.rule_name, old.parameter, old.operation)
            self._audit("remove_rule", profile, {"rule": old.rule_name, "operation": old.operation})
        self._add(rule)
        return rule

    def _add(self, rule: LockdownRule):
        self.catalog.add_rule(rule.profile, rule.rule_name, rule.parameter, rule.operation)
        self._audit("add_rule", rule.profile, {"rule": rule.rule_name, "operation": rule.operation})

    def _audit(self, action: str, profile: str, detail: dict = None):
        if self.record:
            append_audit_log(action, run_id=self.run_id, profile=profile, detail=detail)
