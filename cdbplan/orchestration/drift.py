"""Drift report: what differs between a PlanDefinition and the control plane."""

import logging

from cdbplan.models.types import DriftItem, PlanDefinition

logger = logging.getLogger(__name__)


def report_drift(definition: PlanDefinition, catalog, lockdown=None, active_control=None,
                 activate: bool = False) -> list:
    """Return DriftItems; an empty list means the catalog matches the definition.

    ``lockdown`` and ``active_control`` default to ``catalog``. The active
    plan is only compared when ``activate`` is set.
    """
    lockdown = lockdown or catalog
    active_control = active_control or catalog
    items = _plan_drift(definition, catalog) + _lockdown_drift(definition, lockdown)
    if activate:
        active = active_control.get_active_plan() or ""
        if active.lower() != definition.name.lower():
            items.append(DriftItem("active_plan", "resource_manager_plan", definition.name, active))
    logger.info("Drift report for plan '%s': %d items", definition.name, len(items))
    return items


def _plan_drift(definition: PlanDefinition, catalog) -> list:
    directives = catalog.get_directives(definition.name)
    if directives is None:
        return [DriftItem("plan", definition.name, "present", "missing")]

    items = []
    current = {name.lower(): (name, d) for name, d in directives.profiles.items()}
    for tier in definition.tiers:
        found = current.pop(tier.name.lower(), None)
        if found is None:
            items.append(DriftItem("directive", tier.name, tier.directive.to_dict(), None))
        elif found[1] != tier.directive:
            items.append(DriftItem("directive", tier.name, tier.directive.to_dict(), found[1].to_dict()))
    for name, d in current.values():
        items.append(DriftItem("directive", name, None, d.to_dict()))

    for kind, expected, actual in [
        ("default", definition.default_directive, directives.default),
        ("autotask", definition.autotask_directive, directives.autotask),
    ]:
        if expected != actual:
            items.append(DriftItem(kind, kind, expected.to_dict(), actual.to_dict() if actual else None))
    return items


def _lockdown_drift(definition: PlanDefinition, lockdown) -> list:
    items = []
    for profile in definition.lockdown_profiles:
        if not lockdown.profile_exists(profile):
            items.append(DriftItem("lockdown_profile", profile, "present", "missing"))
            continue
        expected = {r.rule_name: r.operation for r in definition.rules_for(profile)}
        actual = {r.rule_name: r.operation for r in lockdown.list_rules(profile)}
        # Undeclared rules stay reported until an apply with replace drops them.
        for rule_name in sorted(set(expected) | set(actual)):
            if expected.get(rule_name) != actual.get(rule_name):
                items.append(DriftItem(
                    "lockdown_rule", f"{profile}.{rule_name}", expected.get(rule_name), actual.get(rule_name),
                ))
    return items
