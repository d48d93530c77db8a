"""Tests for SQL rendering and the script backend."""

import os
import sys

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from cdbplan.controlplane import sql
from cdbplan.controlplane.script import ScriptControlPlane
from cdbplan.models.errors import DuplicateRuleError, ValidationError
from cdbplan.orchestration.runner import render_policy
from cdbplan.policy.loader import load_policy

TIERS_FILE = os.path.join(PROJECT_ROOT, "config", "tiers.yaml")


@pytest.fixture
def definition():
    return load_policy(TIERS_FILE)


# ── SQL builders ─────────────────────────────────────────────────────────────

def test_plsql_call_without_arguments():
    assert sql.plsql_call("CREATE_PENDING_AREA") == "exec DBMS_RESOURCE_MANAGER.CREATE_PENDING_AREA();"


def test_plsql_call_with_named_arguments():
    assert sql.plsql_call("CREATE_CDB_PLAN", plan="newcdb_plan", comment="it's tiered") == (
        "BEGIN\n"
        "  DBMS_RESOURCE_MANAGER.CREATE_CDB_PLAN(\n"
        "    plan    => 'newcdb_plan',\n"
        "    comment => 'it''s tiered');\n"
        "END;\n"
        "/"
    )


def test_plsql_call_numbers_unquoted():
    block = sql.plsql_call("UPDATE_CDB_AUTOTASK_DIRECTIVE", plan="p", new_shares=2)
    assert "new_shares => 2" in block


def test_lockdown_rule_statements():
    assert sql.lockdown_rule("GOLD", "MAX_IOPS", "ALTER SYSTEM") == (
        "ALTER LOCKDOWN PROFILE GOLD DISABLE STATEMENT = ('ALTER SYSTEM') "
        "CLAUSE = ('SET') OPTION = ('MAX_IOPS')"
    )
    assert sql.lockdown_rule("GOLD", "MAX_IOPS", "ALTER SYSTEM", enable=True).startswith(
        "ALTER LOCKDOWN PROFILE GOLD ENABLE"
    )


def test_identifiers_validated_before_interpolation():
    with pytest.raises(ValidationError):
        sql.create_lockdown_profile("GOLD; DROP USER SYS")
    with pytest.raises(ValidationError):
        sql.switch_container("pdb1 --")
    with pytest.raises(ValidationError):
        sql.lockdown_rule("GOLD", "MAX_IOPS", "GRANT")


def test_set_active_plan_statement():
    assert sql.set_active_plan("newcdb_plan") == (
        "ALTER SYSTEM SET RESOURCE_MANAGER_PLAN = 'newcdb_plan' SCOPE=BOTH"
    )
    assert sql.set_active_plan("") == "ALTER SYSTEM SET RESOURCE_MANAGER_PLAN = '' SCOPE=BOTH"


# ── Script backend ───────────────────────────────────────────────────────────

def test_script_upsert_creates_then_updates():
    script = ScriptControlPlane()
    script.upsert_profile_directive("p", "gold", 3, 60, 60)
    script.upsert_profile_directive("p", "Gold", 4, 60, 60)
    assert "CREATE_CDB_PROFILE_DIRECTIVE" in script.statements[0]
    assert "UPDATE_CDB_PROFILE_DIRECTIVE" in script.statements[1]
    assert "new_shares                => 4" in script.statements[1]


def test_script_rejects_duplicate_rule():
    script = ScriptControlPlane()
    script.create_profile("GOLD")
    script.add_rule("GOLD", "LOCK_MAX_IOPS", "MAX_IOPS", "ALTER SYSTEM")
    with pytest.raises(DuplicateRuleError):
        script.add_rule("GOLD", "LOCK_MAX_IOPS", "MAX_IOPS", "ALTER SYSTEM")


def test_render_full_policy(definition):
    script = render_policy(definition)
    assert script.startswith("exec DBMS_RESOURCE_MANAGER.CREATE_PENDING_AREA();")
    assert script.count("CREATE_CDB_PLAN(") == 1
    assert script.count("CREATE_CDB_PROFILE_DIRECTIVE(") == 3
    assert script.count("UPDATE_CDB_DEFAULT_DIRECTIVE(") == 1
    assert script.count("UPDATE_CDB_AUTOTASK_DIRECTIVE(") == 1
    assert script.index("VALIDATE_PENDING_AREA") < script.index("SUBMIT_PENDING_AREA")
    assert "CLEAR_PENDING_AREA" not in script
    assert "RESOURCE_MANAGER_PLAN" not in script

    for profile in ("GOLD", "SILVER", "BRONZE"):
        assert f"CREATE LOCKDOWN PROFILE {profile};" in script
    assert script.count("ALTER LOCKDOWN PROFILE") == 30
    assert "-- LOCK_DB_PERFORMANCE_PROFILE\n" in script
    assert script.rstrip().endswith(sql.LIST_PLANS_SQL + ";")


def test_render_directive_values(definition):
    script = render_policy(definition)
    assert (
        "    plan                  => 'newcdb_plan',\n"
        "    profile               => 'gold',\n"
        "    shares                => 3,\n"
        "    utilization_limit     => 60,\n"
        "    parallel_server_limit => 60);"
    ) in script
    assert "new_utilization_limit => 60);" in script


def test_render_with_activation_and_pdbs(definition):
    script = render_policy(definition, activate=True, assign=True, restart=True)
    assert "ALTER SYSTEM SET RESOURCE_MANAGER_PLAN = 'newcdb_plan' SCOPE=BOTH;" in script
    assert "ALTER SESSION SET CONTAINER = mypdb1;" in script
    assert "ALTER SYSTEM SET DB_PERFORMANCE_PROFILE = gold SCOPE=SPFILE;" in script
    assert "ALTER SYSTEM SET PDB_LOCKDOWN = GOLD SCOPE=SPFILE;" in script
    assert "ALTER PLUGGABLE DATABASE CLOSE IMMEDIATE;" in script
    assert script.index("SUBMIT_PENDING_AREA") < script.index("RESOURCE_MANAGER_PLAN")
