"""Plan applier: stages a CDB resource plan in a pending area and submits it.

Plan lifecycle (strictly forward):
  EMPTY -> PENDING_OPEN -> DIRECTIVES_STAGED -> VALIDATED -> SUBMITTED -> ACTIVE

Steps:
  1. open_pending_area         — create the pending area
  2. create_plan               — create the plan, or update its comment if it exists
  3. stage_profile_directives  — upsert one profile directive per tier, delete stale ones
  4. update_default_directive  — limits for PDBs without a performance profile
  5. update_autotask_directive — limits for automated maintenance tasks
  6. validate                  — external validator (retried when unavailable)
  7. submit                    — commit; never retried
  8. activate                  — optional, set RESOURCE_MANAGER_PLAN

Any failure up to and including submit clears the pending area and returns
the plan to EMPTY: nothing is ever submitted partially. Applies of the same
plan are serialised by a per-plan lock, and applies sharing a backend by a
per-backend lock, both held for the whole lifecycle.
"""

import logging
import threading
import time
import weakref

from cdbplan.controlplane.base import pending_area
from cdbplan.controlplane.retry import DEFAULT_ATTEMPTS, DEFAULT_DELAY_SECONDS, call_with_retry
from cdbplan.db.database import append_audit_log, create_run, update_run
from cdbplan.models.types import PLAN_STATE_ORDER, PlanDefinition, PlanState

logger = logging.getLogger(__name__)

STAGING_STEPS = [
    "create_plan",
    "stage_profile_directives",
    "update_default_directive",
    "update_autotask_directive",
    "validate",
    "submit",
]

_plan_locks: dict[str, threading.Lock] = {}
_plan_locks_guard = threading.Lock()
_session_locks = weakref.WeakKeyDictionary()


def get_plan_lock(plan: str) -> threading.Lock:
    """Return (or create) the lock serialising applies of ``plan``."""
    with _plan_locks_guard:
        key = plan.lower()
        if key not in _plan_locks:
            _plan_locks[key] = threading.Lock()
        return _plan_locks[key]


def get_session_lock(pending) -> threading.Lock:
    """Return (or create) the lock guarding the pending area of ``pending``.

    A backend holds one session and so one pending area at a time, whatever
    plan is being staged in it.
    """
    with _plan_locks_guard:
        if pending not in _session_locks:
            _session_locks[pending] = threading.Lock()
        return _session_locks[pending]


class PlanApplier:
    """Applies a PlanDefinition through the resource manager capabilities.

    ``pending`` must provide the PendingArea calls; ``catalog`` and
    ``active_control`` default to the same object, which is the common case
    of a single backend implementing every capability group.
    """

    def __init__(self, definition: PlanDefinition, pending, catalog=None, active_control=None,
                 activate: bool = False, retry_attempts: int = DEFAULT_ATTEMPTS,
                 retry_delay: float = DEFAULT_DELAY_SECONDS, record: bool = True,
                 sleep=time.sleep):
        self.definition = definition
        self.pending = pending
        self.catalog = catalog or pending
        self.active_control = active_control or pending
        self.activate = activate
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.record = record
        self._sleep = sleep

        self.state = PlanState.EMPTY
        self.run_id = None
        self.steps_completed = []
        self.plan_created = False
        self.changes = {"created": [], "updated": [], "unchanged": [], "deleted": []}
        self._commit = None

    @property
    def plan(self) -> str:
        return self.definition.name

    def execute(self) -> dict:
        """Run every step. Returns a result dict, raises on failure."""
        with get_plan_lock(self.plan), get_session_lock(self.pending):
            if self.record:
                self.run_id = create_run(self.plan, backend=getattr(self.pending, "name", ""),
                                         activate=self.activate)
            try:
                self._run()
            except Exception as e:
                submitted = self.state in (PlanState.SUBMITTED, PlanState.ACTIVE)
                if not submitted:
                    self.state = PlanState.EMPTY
                logger.error("Apply of plan '%s' failed at step '%s': %s",
                             self.plan, self._current_step(), e)
                if self.record:
                    update_run(self.run_id, state=self.state.value,
                               outcome="FAILED" if submitted else "ROLLED_BACK", error=str(e))
                    append_audit_log(self._current_step(), run_id=self.run_id, plan=self.plan, error=str(e))
                raise

            if self.record:
                update_run(self.run_id, state=self.state.value, outcome="COMPLETED")
            logger.info("Plan '%s' applied (state=%s, run_id=%s)", self.plan, self.state.value, self.run_id)
            return self._build_response()

    def _run(self):
        with pending_area(self.pending) as commit:
            self._commit = commit
            self._advance(PlanState.PENDING_OPEN)
            self._complete("open_pending_area")
            for step in STAGING_STEPS:
                self._run_step(step)
        if self.activate:
            self._run_step("activate")

    def _run_step(self, step: str):
        if self.record:
            update_run(self.run_id, current_step=step)
        getattr(self, f"_step_{step}")()
        self._complete(step)

    def _complete(self, step: str, detail: dict = None):
        self.steps_completed.append(step)
        logger.info("Plan '%s': step '%s' done", self.plan, step)
        if self.record:
            update_run(self.run_id, current_step=step, steps_completed=self.steps_completed)
            append_audit_log(step, run_id=self.run_id, plan=self.plan, detail=detail)

    def _current_step(self) -> str:
        order = ["open_pending_area"] + STAGING_STEPS + ["activate"]
        if len(self.steps_completed) < len(order):
            return order[len(self.steps_completed)]
        return "unknown"

    def _advance(self, state: PlanState):
        if PLAN_STATE_ORDER.index(state) <= PLAN_STATE_ORDER.index(self.state):
            raise RuntimeError(f"Illegal plan state transition {self.state.value} -> {state.value}")
        self.state = state
        if self.record:
            update_run(self.run_id, state=state.value)

    def _read(self, func, *args):
        return call_with_retry(func, *args, attempts=self.retry_attempts, delay=self.retry_delay,
                               sleep=self._sleep, description=getattr(func, "__name__", "call"))

    # ── Steps ───────────────────────────────────────────────────────────────

    def _step_create_plan(self):
        if self._read(self.catalog.plan_exists, self.plan):
            self.catalog.update_plan(self.plan, self.definition.comment)
        else:
            self.catalog.create_plan(self.plan, self.definition.comment)
            self.plan_created = True

    def _step_stage_profile_directives(self):
        existing = None if self.plan_created else self._read(self.catalog.get_directives, self.plan)
        current = {}
        names = {}
        if existing is not None:
            current = {name.lower(): d for name, d in existing.profiles.items()}
            names = {name.lower(): name for name in existing.profiles}

        for tier in self.definition.tiers:
            before = current.get(tier.name.lower())
            if before == tier.directive:
                self.changes["unchanged"].append(tier.name)
                continue
            self.catalog.upsert_profile_directive(
                self.plan, tier.name, tier.shares, tier.utilization_limit, tier.parallel_server_limit,
            )
            self.changes["updated" if before is not None else "created"].append(tier.name)

        declared = {t.name.lower() for t in self.definition.tiers}
        for key in sorted(set(current) - declared):
            self.catalog.delete_profile_directive(self.plan, names[key])
            self.changes["deleted"].append(names[key])

    def _step_update_default_directive(self):
        d = self.definition.default_directive
        self.catalog.update_default_directive(self.plan, d.shares, d.utilization_limit, d.parallel_server_limit)

    def _step_update_autotask_directive(self):
        d = self.definition.autotask_directive
        self.catalog.update_autotask_directive(self.plan, d.shares, d.utilization_limit)
        self._advance(PlanState.DIRECTIVES_STAGED)

    def _step_validate(self):
        self._read(self.pending.validate_pending_area)
        self._advance(PlanState.VALIDATED)

    def _step_submit(self):
        self._commit()
        self._advance(PlanState.SUBMITTED)

    def _step_activate(self):
        self.active_control.set_active_plan(self.plan)
        self._advance(PlanState.ACTIVE)

    def _build_response(self) -> dict:
        return {
            "status": "applied",
            "plan": self.plan,
            "run_id": self.run_id,
            "state": self.state.value,
            "activated": self.state == PlanState.ACTIVE,
            "plan_created": self.plan_created,
            "directives": self.changes,
            "steps_completed": self.steps_completed,
        }
