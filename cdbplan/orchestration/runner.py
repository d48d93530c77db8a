"""End-to-end policy application: plan, then lockdown profiles, then PDBs.

Runtime settings come from the state store config table.
"""

import logging

from cdbplan.controlplane import sql
from cdbplan.controlplane.script import ScriptControlPlane
from cdbplan.db.database import get_config, get_config_float, get_config_int
from cdbplan.models.types import PlanDefinition
from cdbplan.orchestration.lockdown_applier import LockdownApplier
from cdbplan.orchestration.pdb_assigner import assign_pdbs
from cdbplan.orchestration.plan_applier import PlanApplier

logger = logging.getLogger(__name__)


def apply_policy(definition: PlanDefinition, control_plane, activate: bool = False,
                 replace_lockdown: bool | None = None, assign: bool = False,
                 restart: bool = False) -> dict:
    if replace_lockdown is None:
        replace_lockdown = get_config("lockdown_replace", "false") == "true"
    logger.info("Applying plan '%s' (%d tiers, activate=%s, replace_lockdown=%s)",
                definition.name, len(definition.tiers), activate, replace_lockdown)

    applier = PlanApplier(
        definition, control_plane,
        activate=activate,
        retry_attempts=get_config_int("retry_attempts", 3),
        retry_delay=get_config_float("retry_delay_seconds", 1.0),
    )
    result = applier.execute()

    lockdown = LockdownApplier(control_plane, replace=replace_lockdown, run_id=applier.run_id)
    result["lockdown"] = lockdown.apply(definition)

    if assign:
        result["pdbs"] = assign_pdbs(definition, control_plane, restart=restart)
    return result


def render_policy(definition: PlanDefinition, activate: bool = False, assign: bool = False,
                  restart: bool = False) -> str:
    """Return the SQL*Plus script that applies ``definition`` to a fresh CDB."""
    script = ScriptControlPlane()
    PlanApplier(definition, script, activate=activate, record=False).execute()
    LockdownApplier(script, record=False).apply(definition)
    if assign:
        assign_pdbs(definition, script, restart=restart, record=False)
    script.statements.append(sql.LIST_PLANS_SQL + ";")
    return script.render()
