"""Oracle backend: DBMS_RESOURCE_MANAGER, lockdown profile DDL and ALTER SYSTEM.

Handles:
  - One dedicated session per backend (the pending area is session-bound)
  - A per-call timeout through the python-oracledb ``call_timeout``
  - Mapping of python-oracledb errors onto the plan error hierarchy

Connection settings come from CDBPLAN_DSN, CDBPLAN_USER and CDBPLAN_PASSWORD
unless passed explicitly. The user needs the resource manager administer
privilege and CREATE/ALTER/DROP LOCKDOWN PROFILE in the CDB root.
"""

import logging
import os

import oracledb

from cdbplan.controlplane import sql
from cdbplan.controlplane.base import ControlPlane
from cdbplan.models.errors import (
    DuplicateRuleError, ExternalUnavailable, PlanValidationError,
    ResourcePlanError, SubmitError,
)
from cdbplan.models.types import Directive, LockdownRule, PlanDirectives, PlanInfo

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 30
TCP_CONNECT_TIMEOUT_SECONDS = 10

# Lost connections, network errors and call timeouts.
UNAVAILABLE_CODES = {
    "DPY-1001", "DPY-4011", "DPY-4024", "DPY-6005",
    "ORA-03113", "ORA-03114", "ORA-03135", "ORA-03156",
    "ORA-12170", "ORA-12514", "ORA-12541",
}


def error_code(exc: Exception) -> str:
    error = exc.args[0] if exc.args else None
    return getattr(error, "full_code", "") or ""


def error_message(exc: Exception) -> str:
    error = exc.args[0] if exc.args else None
    return getattr(error, "message", None) or str(exc)


class OracleControlPlane(ControlPlane):
    name = "oracle"

    def __init__(self, dsn: str = None, user: str = None, password: str = None,
                 call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS, connection=None):
        if connection is None:
            dsn = dsn or os.environ.get("CDBPLAN_DSN", "")
            user = user or os.environ.get("CDBPLAN_USER", "")
            password = password or os.environ.get("CDBPLAN_PASSWORD", "")
            if not dsn or not user:
                raise ExternalUnavailable("CDBPLAN_DSN and CDBPLAN_USER must be set for the oracle backend")
            try:
                connection = oracledb.connect(
                    user=user, password=password, dsn=dsn,
                    tcp_connect_timeout=TCP_CONNECT_TIMEOUT_SECONDS,
                )
            except oracledb.Error as exc:
                raise ExternalUnavailable(f"cannot connect to {dsn}: {error_message(exc)}") from exc
            logger.info("Connected to %s as %s", dsn, user)
        self._conn = connection
        self._conn.call_timeout = int(call_timeout * 1000)

    def close(self):
        try:
            self._conn.close()
        except oracledb.Error as exc:
            logger.warning("Error closing connection: %s", error_message(exc))

    # ── Low-level helpers ───────────────────────────────────────────────────

    def _raise(self, exc, error_cls, action, **context):
        code = error_code(exc)
        message = f"{action} failed: {error_message(exc)}"
        if error_cls is not SubmitError and (
            code in UNAVAILABLE_CODES or isinstance(exc, (oracledb.OperationalError, oracledb.InterfaceError))
        ):
            raise ExternalUnavailable(message, **context) from exc
        raise error_cls(message, **context) from exc

    def _callproc(self, procedure, error_cls=PlanValidationError, context=None, **params):
        context = context or {}
        name = f"{sql.RSRC_PACKAGE}.{procedure}"
        logger.debug("Calling %s(%s)", name, params)
        try:
            with self._conn.cursor() as cursor:
                cursor.callproc(name, keyword_parameters=params)
        except oracledb.Error as exc:
            self._raise(exc, error_cls, name, **context)

    def _execute(self, statement, error_cls=ResourcePlanError, context=None):
        context = context or {}
        logger.debug("Executing %s", statement)
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(statement)
        except oracledb.Error as exc:
            self._raise(exc, error_cls, statement, **context)

    def _query(self, statement, params=None, context=None):
        context = context or {}
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(statement, params or {})
                return cursor.fetchall()
        except oracledb.Error as exc:
            self._raise(exc, ResourcePlanError, "query", **context)

    # ── Pending area ────────────────────────────────────────────────────────

    def create_pending_area(self):
        self._callproc("CREATE_PENDING_AREA")

    def validate_pending_area(self):
        self._callproc("VALIDATE_PENDING_AREA")

    def submit_pending_area(self):
        self._callproc("SUBMIT_PENDING_AREA", error_cls=SubmitError)

    def clear_pending_area(self):
        self._callproc("CLEAR_PENDING_AREA", error_cls=ResourcePlanError)

    # ── Plans ───────────────────────────────────────────────────────────────

    def plan_exists(self, plan):
        rows = self._query(sql.PLAN_EXISTS_SQL, {"plan": plan}, {"plan": plan})
        return rows[0][0] > 0

    def create_plan(self, plan, comment):
        self._callproc("CREATE_CDB_PLAN", context={"plan": plan}, plan=plan, comment=comment)

    def update_plan(self, plan, comment):
        self._callproc("UPDATE_CDB_PLAN", context={"plan": plan}, plan=plan, new_comment=comment)

    def get_directives(self, plan):
        if not self.plan_exists(plan):
            return None
        result = PlanDirectives()
        for directive_type, profile, shares, util, pq in self._query(
                sql.PLAN_DIRECTIVES_SQL, {"plan": plan}, {"plan": plan}):
            if directive_type == "PROFILE":
                result.profiles[profile.lower()] = Directive(shares, util, pq)
            elif directive_type == "DEFAULT_PDB":
                result.default = Directive(shares, util, pq)
            elif directive_type == "AUTOTASK":
                result.autotask = Directive(shares, util)
        return result

    def upsert_profile_directive(self, plan, profile, shares, utilization_limit, parallel_server_limit):
        context = {"plan": plan, "directive": profile}
        existing = self.get_directives(plan)
        if existing is not None and profile.lower() in existing.profiles:
            self._callproc(
                "UPDATE_CDB_PROFILE_DIRECTIVE", context=context, plan=plan, profile=profile,
                new_shares=shares, new_utilization_limit=utilization_limit,
                new_parallel_server_limit=parallel_server_limit,
            )
            return
        self._callproc(
            "CREATE_CDB_PROFILE_DIRECTIVE", context=context, plan=plan, profile=profile,
            shares=shares, utilization_limit=utilization_limit,
            parallel_server_limit=parallel_server_limit,
        )

    def delete_profile_directive(self, plan, profile):
        self._callproc("DELETE_CDB_PROFILE_DIRECTIVE", context={"plan": plan, "directive": profile},
                       plan=plan, profile=profile)

    def update_default_directive(self, plan, shares, utilization_limit, parallel_server_limit):
        self._callproc(
            "UPDATE_CDB_DEFAULT_DIRECTIVE", context={"plan": plan, "directive": "default"},
            plan=plan, new_shares=shares, new_utilization_limit=utilization_limit,
            new_parallel_server_limit=parallel_server_limit,
        )

    def update_autotask_directive(self, plan, shares, utilization_limit):
        self._callproc(
            "UPDATE_CDB_AUTOTASK_DIRECTIVE", context={"plan": plan, "directive": "autotask"},
            plan=plan, new_shares=shares, new_utilization_limit=utilization_limit,
        )

    def list_plans(self):
        return [
            PlanInfo(plan=plan, status=status or "", comments=comments or "")
            for plan, status, comments in self._query(sql.LIST_PLANS_SQL)
        ]

    # ── Active plan ─────────────────────────────────────────────────────────

    def set_active_plan(self, plan):
        self._execute(sql.set_active_plan(plan), context={"plan": plan})

    def get_active_plan(self):
        rows = self._query(sql.ACTIVE_PLAN_SQL)
        value = (rows[0][0] if rows else "") or ""
        if value.upper().startswith("FORCE:"):
            value = value[len("FORCE:"):]
        return value

    # ── Lockdown ────────────────────────────────────────────────────────────

    def profile_exists(self, profile):
        rows = self._query(sql.PROFILE_EXISTS_SQL, {"profile": profile}, {"profile": profile})
        return rows[0][0] > 0

    def create_profile(self, profile):
        self._execute(sql.create_lockdown_profile(profile), context={"profile": profile})

    def drop_profile(self, profile):
        self._execute(sql.drop_lockdown_profile(profile), context={"profile": profile})

    def list_rules(self, profile):
        return [
            LockdownRule(profile=profile, parameter=parameter, operation=operation)
            for operation, parameter in self._query(sql.LIST_RULES_SQL, {"profile": profile}, {"profile": profile})
        ]

    def add_rule(self, profile, rule_name, parameter, operation):
        if any(r.parameter == parameter for r in self.list_rules(profile)):
            raise DuplicateRuleError("parameter is already locked", profile=profile, rule=rule_name)
        self._execute(sql.lockdown_rule(profile, parameter, operation),
                      context={"profile": profile, "rule": rule_name})

    def remove_rule(self, profile, rule_name, parameter, operation):
        self._execute(sql.lockdown_rule(profile, parameter, operation, enable=True),
                      context={"profile": profile, "rule": rule_name})

    # ── PDBs ────────────────────────────────────────────────────────────────

    def assign_profile(self, pdb, performance_profile, lockdown_profile):
        context = {"profile": performance_profile}
        self._execute(sql.switch_container(pdb), context=context)
        try:
            self._execute(sql.set_pdb_parameter("DB_PERFORMANCE_PROFILE", performance_profile), context=context)
            self._execute(sql.set_pdb_parameter("PDB_LOCKDOWN", lockdown_profile), context=context)
        finally:
            self._execute(sql.ROOT_CONTAINER)

    def restart(self, pdb):
        self._execute(sql.switch_container(pdb))
        try:
            self._execute(sql.CLOSE_PDB)
            self._execute(sql.OPEN_PDB)
        finally:
            self._execute(sql.ROOT_CONTAINER)
