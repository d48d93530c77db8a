"""Capability groups of the resource-management control plane.

Appliers depend on these narrow interfaces only, so tests and dry runs can
swap the Oracle backend for an in-memory or script-recording one.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class PendingArea(ABC):
    @abstractmethod
    def create_pending_area(self):
        raise NotImplementedError

    @abstractmethod
    def validate_pending_area(self):
        raise NotImplementedError

    @abstractmethod
    def submit_pending_area(self):
        raise NotImplementedError

    @abstractmethod
    def clear_pending_area(self):
        raise NotImplementedError


class PlanCatalog(ABC):
    @abstractmethod
    def plan_exists(self, plan):
        raise NotImplementedError

    @abstractmethod
    def create_plan(self, plan, comment):
        raise NotImplementedError

    @abstractmethod
    def update_plan(self, plan, comment):
        raise NotImplementedError

    @abstractmethod
    def get_directives(self, plan):
        """Return PlanDirectives for ``plan`` (None if the plan does not exist)."""
        raise NotImplementedError

    @abstractmethod
    def upsert_profile_directive(self, plan, profile, shares, utilization_limit, parallel_server_limit):
        raise NotImplementedError

    @abstractmethod
    def delete_profile_directive(self, plan, profile):
        raise NotImplementedError

    @abstractmethod
    def update_default_directive(self, plan, shares, utilization_limit, parallel_server_limit):
        raise NotImplementedError

    @abstractmethod
    def update_autotask_directive(self, plan, shares, utilization_limit):
        raise NotImplementedError

    @abstractmethod
    def list_plans(self):
        """Return PlanInfo for every known plan, ordered by name."""
        raise NotImplementedError


class ActivePlanControl(ABC):
    @abstractmethod
    def set_active_plan(self, plan):
        raise NotImplementedError

    @abstractmethod
    def get_active_plan(self):
        raise NotImplementedError


class LockdownCatalog(ABC):
    @abstractmethod
    def profile_exists(self, profile):
        raise NotImplementedError

    @abstractmethod
    def create_profile(self, profile):
        raise NotImplementedError

    @abstractmethod
    def drop_profile(self, profile):
        raise NotImplementedError

    @abstractmethod
    def list_rules(self, profile):
        """Return the LockdownRules currently held by ``profile``."""
        raise NotImplementedError

    @abstractmethod
    def add_rule(self, profile, rule_name, parameter, operation):
        raise NotImplementedError

    @abstractmethod
    def remove_rule(self, profile, rule_name, parameter, operation):
        raise NotImplementedError


class PdbControl(ABC):
    @abstractmethod
    def assign_profile(self, pdb, performance_profile, lockdown_profile):
        raise NotImplementedError

    @abstractmethod
    def restart(self, pdb):
        raise NotImplementedError


class ControlPlane(PendingArea, PlanCatalog, ActivePlanControl, LockdownCatalog, PdbControl):
    """A backend implementing every capability group."""

    name = "abstract"

    def close(self):
        pass


@contextmanager
def pending_area(area: PendingArea):
    """Open a pending area and clear it on every exit that is not a submit.

    The body signals a successful submit by calling the yielded ``commit``
    callable; anything else (including exceptions) discards the staged
    changes.
    """
    state = {"submitted": False}

    def commit():
        area.submit_pending_area()
        state["submitted"] = True

    area.create_pending_area()
    try:
        yield commit
    finally:
        if not state["submitted"]:
            try:
                area.clear_pending_area()
                logger.warning("Pending area discarded")
            except Exception as e:
                logger.error("Could not clear pending area: %s", e)
