"""Control plane that writes a SQL*Plus script instead of executing anything.

Reads answer as if the database were fresh (no plans, no profiles), so
applying a policy against this backend regenerates the full set of
administrative statements for that policy.
"""

from cdbplan.controlplane import sql
from cdbplan.controlplane.base import ControlPlane
from cdbplan.models.errors import DuplicateRuleError
from cdbplan.models.types import LockdownRule


class ScriptControlPlane(ControlPlane):
    name = "script"

    def __init__(self):
        self.statements = []
        self._plans = {}     # plan -> set of staged profiles
        self._profiles = {}  # lockdown profile -> list of LockdownRule
        self._active_plan = ""

    def render(self) -> str:
        return "\n\n".join(self.statements) + "\n"

    def _emit(self, statement: str):
        self.statements.append(statement)

    def _ddl(self, statement: str):
        self._emit(statement + ";")

    def create_pending_area(self):
        self._emit(sql.plsql_call("CREATE_PENDING_AREA"))

    def validate_pending_area(self):
        self._emit(sql.plsql_call("VALIDATE_PENDING_AREA"))

    def submit_pending_area(self):
        self._emit(sql.plsql_call("SUBMIT_PENDING_AREA"))

    def clear_pending_area(self):
        self._emit(sql.plsql_call("CLEAR_PENDING_AREA"))

    def plan_exists(self, plan):
        return plan in self._plans

    def create_plan(self, plan, comment):
        self._plans[plan] = set()
        self._emit(sql.plsql_call("CREATE_CDB_PLAN", plan=plan, comment=comment))

    def update_plan(self, plan, comment):
        self._emit(sql.plsql_call("UPDATE_CDB_PLAN", plan=plan, new_comment=comment))

    def get_directives(self, plan):
        return None

    def upsert_profile_directive(self, plan, profile, shares, utilization_limit, parallel_server_limit):
        staged = self._plans.setdefault(plan, set())
        if profile.lower() in staged:
            self._emit(sql.plsql_call(
                "UPDATE_CDB_PROFILE_DIRECTIVE", plan=plan, profile=profile, new_shares=shares,
                new_utilization_limit=utilization_limit, new_parallel_server_limit=parallel_server_limit,
            ))
            return
        staged.add(profile.lower())
        self._emit(sql.plsql_call(
            "CREATE_CDB_PROFILE_DIRECTIVE", plan=plan, profile=profile, shares=shares,
            utilization_limit=utilization_limit, parallel_server_limit=parallel_server_limit,
        ))

    def delete_profile_directive(self, plan, profile):
        self._plans.get(plan, set()).discard(profile.lower())
        self._emit(sql.plsql_call("DELETE_CDB_PROFILE_DIRECTIVE", plan=plan, profile=profile))

    def update_default_directive(self, plan, shares, utilization_limit, parallel_server_limit):
        self._emit(sql.plsql_call(
            "UPDATE_CDB_DEFAULT_DIRECTIVE", plan=plan, new_shares=shares,
            new_utilization_limit=utilization_limit, new_parallel_server_limit=parallel_server_limit,
        ))

    def update_autotask_directive(self, plan, shares, utilization_limit):
        self._emit(sql.plsql_call(
            "UPDATE_CDB_AUTOTASK_DIRECTIVE", plan=plan, new_shares=shares,
            new_utilization_limit=utilization_limit,
        ))

    def list_plans(self):
        return []

    def set_active_plan(self, plan):
        self._active_plan = plan
        self._ddl(sql.set_active_plan(plan))

    def get_active_plan(self):
        return self._active_plan

    def profile_exists(self, profile):
        return profile in self._profiles

    def create_profile(self, profile):
        self._profiles[profile] = []
        self._ddl(sql.create_lockdown_profile(profile))

    def drop_profile(self, profile):
        self._profiles.pop(profile, None)
        self._ddl(sql.drop_lockdown_profile(profile))

    def list_rules(self, profile):
        return list(self._profiles.get(profile, []))

    def add_rule(self, profile, rule_name, parameter, operation):
        rules = self._profiles.setdefault(profile, [])
        if any(r.parameter == parameter for r in rules):
            raise DuplicateRuleError("parameter is already locked", profile=profile, rule=rule_name)
        rules.append(LockdownRule(profile=profile, parameter=parameter, operation=operation))
        self._emit(f"-- {rule_name}\n{sql.lockdown_rule(profile, parameter, operation)};")

    def remove_rule(self, profile, rule_name, parameter, operation):
        self._profiles[profile] = [r for r in self._profiles.get(profile, []) if r.parameter != parameter]
        self._ddl(sql.lockdown_rule(profile, parameter, operation, enable=True))

    def assign_profile(self, pdb, performance_profile, lockdown_profile):
        self._ddl(sql.switch_container(pdb))
        self._ddl(sql.set_pdb_parameter("DB_PERFORMANCE_PROFILE", performance_profile))
        self._ddl(sql.set_pdb_parameter("PDB_LOCKDOWN", lockdown_profile))
        self._ddl(sql.ROOT_CONTAINER)

    def restart(self, pdb):
        self._ddl(sql.switch_container(pdb))
        self._ddl(sql.CLOSE_PDB)
        self._ddl(sql.OPEN_PDB)
        self._ddl(sql.ROOT_CONTAINER)
