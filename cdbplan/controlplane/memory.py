"""In-process control plane.

Keeps a catalog with the same pending-area semantics as the database:
resource manager calls mutate a private copy of the plans, which only
replaces the committed catalog on submit; reads always see the committed
catalog. Profile directive names are case-insensitive and reported in
lower case, as the Oracle backend reports them. Lockdown and PDB settings take
effect immediately, as DDL does. Every call is appended to ``calls`` so
callers can inspect the order in which things were issued.
"""

import copy
import logging

from cdbplan.controlplane.base import ControlPlane
from cdbplan.models.errors import (
    DuplicateRuleError, PlanValidationError, ResourcePlanError, SubmitError,
)
from cdbplan.models.types import Directive, LockdownRule, PlanDirectives, PlanInfo

logger = logging.getLogger(__name__)

DEFAULT_CDB_PLAN = "DEFAULT_CDB_PLAN"


def _new_plan(comment: str) -> dict:
    return {
        "comment": comment,
        "profiles": {},
        "default": Directive(1, 100, 100),
        "autotask": Directive(1, 100),
    }


class MemoryControlPlane(ControlPlane):
    name = "memory"

    def __init__(self, active_plan: str = ""):
        self._plans = {DEFAULT_CDB_PLAN: _new_plan("Default CDB plan")}
        self._pending = None
        self._active_plan = active_plan
        self._profiles = {}
        self.pdb_settings = {}
        self.restarts = {}
        self.calls = []

    # ── Pending area ────────────────────────────────────────────────────────

    def create_pending_area(self):
        self.calls.append(("create_pending_area",))
        if self._pending is not None:
            raise PlanValidationError("pending area is already active")
        self._pending = copy.deepcopy(self._plans)

    def validate_pending_area(self):
        self.calls.append(("validate_pending_area",))
        self._validate(self._require_pending())

    def submit_pending_area(self):
        self.calls.append(("submit_pending_area",))
        if self._pending is None:
            raise SubmitError("pending area is not active")
        try:
            self._validate(self._pending)
        except PlanValidationError as e:
            raise SubmitError(f"submit rejected: {e.reason}", plan=e.plan, directive=e.directive) from e
        self._plans = self._pending
        self._pending = None

    def clear_pending_area(self):
        self.calls.append(("clear_pending_area",))
        self._pending = None

    def _require_pending(self) -> dict:
        if self._pending is None:
            raise PlanValidationError("pending area is not active")
        return self._pending

    @staticmethod
    def _validate(plans: dict):
        for plan, body in plans.items():
            directives = [(profile, d) for profile, d in body["profiles"].items()]
            directives.append(("default", body["default"]))
            directives.append(("autotask", body["autotask"]))
            for name, d in directives:
                if not 1 <= d.shares <= 100:
                    raise PlanValidationError(
                        f"shares must be between 1 and 100, got {d.shares}", plan=plan, directive=name,
                    )
                if not 1 <= d.utilization_limit <= 100:
                    raise PlanValidationError(
                        f"utilization_limit must be between 1 and 100, got {d.utilization_limit}",
                        plan=plan, directive=name,
                    )
                if d.parallel_server_limit is not None and not 0 <= d.parallel_server_limit <= 100:
                    raise PlanValidationError(
                        f"parallel_server_limit must be between 0 and 100, got {d.parallel_server_limit}",
                        plan=plan, directive=name,
                    )

    # ── Plans ───────────────────────────────────────────────────────────────

    def _plan(self, plan: str, directive: str = None) -> dict:
        pending = self._require_pending()
        if plan not in pending:
            raise PlanValidationError("plan does not exist", plan=plan, directive=directive)
        return pending[plan]

    def plan_exists(self, plan):
        self.calls.append(("plan_exists", plan))
        return plan in self._plans

    def create_plan(self, plan, comment):
        self.calls.append(("create_plan", plan, comment))
        pending = self._require_pending()
        if plan in pending:
            raise PlanValidationError("plan already exists", plan=plan)
        pending[plan] = _new_plan(comment)

    def update_plan(self, plan, comment):
        self.calls.append(("update_plan", plan, comment))
        self._plan(plan)["comment"] = comment

    def get_directives(self, plan):
        self.calls.append(("get_directives", plan))
        body = self._plans.get(plan)
        if body is None:
            return None
        return PlanDirectives(
            profiles=dict(body["profiles"]), default=body["default"], autotask=body["autotask"],
        )

    def upsert_profile_directive(self, plan, profile, shares, utilization_limit, parallel_server_limit):
        self.calls.append(("upsert_profile_directive", plan, profile, shares,
                           utilization_limit, parallel_server_limit))
        self._plan(plan, profile)["profiles"][profile.lower()] = Directive(
            shares, utilization_limit, parallel_server_limit,
        )

    def delete_profile_directive(self, plan, profile):
        self.calls.append(("delete_profile_directive", plan, profile))
        profiles = self._plan(plan, profile)["profiles"]
        if profile.lower() not in profiles:
            raise PlanValidationError("profile directive does not exist", plan=plan, directive=profile)
        del profiles[profile.lower()]

    def update_default_directive(self, plan, shares, utilization_limit, parallel_server_limit):
        self.calls.append(("update_default_directive", plan, shares, utilization_limit, parallel_server_limit))
        self._plan(plan, "default")["default"] = Directive(shares, utilization_limit, parallel_server_limit)

    def update_autotask_directive(self, plan, shares, utilization_limit):
        self.calls.append(("update_autotask_directive", plan, shares, utilization_limit))
        self._plan(plan, "autotask")["autotask"] = Directive(shares, utilization_limit)

    def list_plans(self):
        infos = {name: PlanInfo(name, "", body["comment"]) for name, body in self._plans.items()}
        if self._pending is not None:
            for name, body in self._pending.items():
                if name not in self._plans:
                    infos[name] = PlanInfo(name, "PENDING", body["comment"])
        return [infos[name] for name in sorted(infos)]

    # ── Active plan ─────────────────────────────────────────────────────────

    def set_active_plan(self, plan):
        self.calls.append(("set_active_plan", plan))
        if plan and plan not in self._plans:
            raise PlanValidationError("cannot activate a plan that has not been submitted", plan=plan)
        self._active_plan = plan

    def get_active_plan(self):
        return self._active_plan

    # ── Lockdown ────────────────────────────────────────────────────────────

    def profile_exists(self, profile):
        return profile in self._profiles

    def create_profile(self, profile):
        self.calls.append(("create_profile", profile))
        if profile in self._profiles:
            raise ResourcePlanError("lockdown profile already exists", profile=profile)
        self._profiles[profile] = []

    def drop_profile(self, profile):
        self.calls.append(("drop_profile", profile))
        if profile not in self._profiles:
            raise ResourcePlanError("lockdown profile does not exist", profile=profile)
        del self._profiles[profile]

    def list_rules(self, profile):
        return list(self._profiles.get(profile, []))

    def add_rule(self, profile, rule_name, parameter, operation):
        self.calls.append(("add_rule", profile, rule_name, parameter, operation))
        if profile not in self._profiles:
            raise ResourcePlanError("lockdown profile does not exist", profile=profile, rule=rule_name)
        rules = self._profiles[profile]
        if any(r.parameter == parameter for r in rules):
            raise DuplicateRuleError("parameter is already locked", profile=profile, rule=rule_name)
        rules.append(LockdownRule(profile=profile, parameter=parameter, operation=operation))

    def remove_rule(self, profile, rule_name, parameter, operation):
        self.calls.append(("remove_rule", profile, rule_name, parameter, operation))
        rules = self._profiles.get(profile, [])
        kept = [r for r in rules if not (r.parameter == parameter and r.operation == operation)]
        if len(kept) == len(rules):
            raise ResourcePlanError("lockdown rule does not exist", profile=profile, rule=rule_name)
        self._profiles[profile] = kept

    # ── PDBs ────────────────────────────────────────────────────────────────

    def assign_profile(self, pdb, performance_profile, lockdown_profile):
        self.calls.append(("assign_profile", pdb, performance_profile, lockdown_profile))
        self.pdb_settings[pdb] = {
            "db_performance_profile": performance_profile,
            "pdb_lockdown": lockdown_profile,
        }

    def restart(self, pdb):
        self.calls.append(("restart", pdb))
        self.restarts[pdb] = self.restarts.get(pdb, 0) + 1
