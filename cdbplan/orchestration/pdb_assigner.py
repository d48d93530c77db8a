"""Binds PDBs to their tier: performance profile plus lockdown profile.

Both parameters are written with SCOPE=SPFILE, so a PDB only picks them up
after a restart; ``restart=True`` closes and reopens each assigned PDB.
"""

import logging

from cdbplan.db.database import append_audit_log
from cdbplan.models.types import PlanDefinition, lockdown_profile_name

logger = logging.getLogger(__name__)


def assign_pdbs(definition: PlanDefinition, pdb_control, restart: bool = False,
                record: bool = True) -> list[dict]:
    results = []
    for pdb, tier_name in definition.pdb_assignments.items():
        lockdown = lockdown_profile_name(tier_name)
        pdb_control.assign_profile(pdb, tier_name, lockdown)
        if restart:
            pdb_control.restart(pdb)
        logger.info("PDB %s assigned to profile %s (lockdown %s, restarted=%s)",
                    pdb, tier_name, lockdown, restart)
        if record:
            append_audit_log("assign_pdb", plan=definition.name, profile=tier_name,
                             detail={"pdb": pdb, "lockdown": lockdown, "restarted": restart})
        results.append({"pdb": pdb, "profile": tier_name, "lockdown": lockdown, "restarted": restart})
    return results
