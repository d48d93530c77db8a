"""SQL text for the statements both the Oracle and script backends issue.

DDL cannot take bind variables, so identifiers are checked against
IDENTIFIER_REGEX and literals are quoted here before interpolation.
"""

from cdbplan.models.errors import ValidationError
from cdbplan.models.types import VALID_OPERATIONS, is_identifier

RSRC_PACKAGE = "DBMS_RESOURCE_MANAGER"

LIST_PLANS_SQL = "SELECT plan, status, comments FROM dba_cdb_rsrc_plans ORDER BY plan"
PLAN_EXISTS_SQL = "SELECT COUNT(*) FROM dba_cdb_rsrc_plans WHERE plan = UPPER(:plan) AND status IS NULL"
PLAN_DIRECTIVES_SQL = """
    SELECT directive_type, profile, shares, utilization_limit, parallel_server_limit
      FROM dba_cdb_rsrc_plan_directives
     WHERE plan = UPPER(:plan)
       AND status IS NULL
     ORDER BY directive_type, profile
"""
ACTIVE_PLAN_SQL = "SELECT value FROM v$parameter WHERE name = 'resource_manager_plan'"
PROFILE_EXISTS_SQL = "SELECT COUNT(*) FROM dba_lockdown_profiles WHERE profile_name = UPPER(:profile)"
LIST_RULES_SQL = """
    SELECT rule, clause_option
      FROM dba_lockdown_profiles
     WHERE profile_name = UPPER(:profile)
       AND rule_type = 'STATEMENT'
       AND clause = 'SET'
       AND status = 'DISABLE'
"""


def identifier(value: str) -> str:
    if not is_identifier(value):
        raise ValidationError(f"'{value}' is not a valid identifier")
    return value


def literal(value) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _operation(operation: str) -> str:
    if operation not in VALID_OPERATIONS:
        raise ValidationError(f"restricted operation must be one of {VALID_OPERATIONS}")
    return operation


def create_lockdown_profile(profile: str) -> str:
    return f"CREATE LOCKDOWN PROFILE {identifier(profile)}"


def drop_lockdown_profile(profile: str) -> str:
    return f"DROP LOCKDOWN PROFILE {identifier(profile)}"


def lockdown_rule(profile: str, parameter: str, operation: str, enable: bool = False) -> str:
    action = "ENABLE" if enable else "DISABLE"
    return (
        f"ALTER LOCKDOWN PROFILE {identifier(profile)} {action} "
        f"STATEMENT = ({literal(_operation(operation))}) CLAUSE = ('SET') "
        f"OPTION = ({literal(identifier(parameter))})"
    )


def set_active_plan(plan: str) -> str:
    value = identifier(plan) if plan else ""
    return f"ALTER SYSTEM SET RESOURCE_MANAGER_PLAN = {literal(value)} SCOPE=BOTH"


def switch_container(pdb: str) -> str:
    return f"ALTER SESSION SET CONTAINER = {identifier(pdb)}"


def set_pdb_parameter(name: str, value: str) -> str:
    return f"ALTER SYSTEM SET {identifier(name)} = {identifier(value)} SCOPE=SPFILE"


CLOSE_PDB = "ALTER PLUGGABLE DATABASE CLOSE IMMEDIATE"
OPEN_PDB = "ALTER PLUGGABLE DATABASE OPEN"
ROOT_CONTAINER = "ALTER SESSION SET CONTAINER = CDB$ROOT"


def plsql_call(procedure: str, **params) -> str:
    """Render an anonymous block calling ``procedure`` with named arguments."""
    if not params:
        return f"exec {RSRC_PACKAGE}.{procedure}();"
    width = max(len(k) for k in params)
    args = ",\n".join(
        f"    {k.ljust(width)} => {v if isinstance(v, int) else literal(v)}"
        for k, v in params.items()
    )
    return f"BEGIN\n  {RSRC_PACKAGE}.{procedure}(\n{args});\nEND;\n/"
