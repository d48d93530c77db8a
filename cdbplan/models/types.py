"""Data types for the CDB resource plan manager."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


DEFAULT_PLAN_NAME = "newcdb_plan"
DEFAULT_PLAN_COMMENT = "CDB resource plan for soft partitioning the hardware resources across PDB tiers"

ALTER_SYSTEM = "ALTER SYSTEM"
ALTER_SESSION = "ALTER SESSION"
VALID_OPERATIONS = (ALTER_SYSTEM, ALTER_SESSION)

# Initialization parameters a tier may lock. Memory/IO parameters plus the
# performance profile itself, so PDB owners cannot switch tiers.
LOCKABLE_PARAMETERS = (
    "DB_PERFORMANCE_PROFILE",
    "MAX_IOPS",
    "MAX_MBPS",
    "SESSIONS",
    "PGA_AGGREGATE_TARGET",
    "PGA_AGGREGATE_LIMIT",
    "SGA_TARGET",
    "SGA_MIN_SIZE",
    "SHARED_POOL_SIZE",
    "DB_CACHE_SIZE",
)

IDENTIFIER_REGEX = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")


def is_identifier(value) -> bool:
    return isinstance(value, str) and bool(IDENTIFIER_REGEX.match(value))


class PlanState(str, Enum):
    EMPTY = "EMPTY"
    PENDING_OPEN = "PENDING_OPEN"
    DIRECTIVES_STAGED = "DIRECTIVES_STAGED"
    VALIDATED = "VALIDATED"
    SUBMITTED = "SUBMITTED"
    ACTIVE = "ACTIVE"


PLAN_STATE_ORDER = [
    PlanState.EMPTY,
    PlanState.PENDING_OPEN,
    PlanState.DIRECTIVES_STAGED,
    PlanState.VALIDATED,
    PlanState.SUBMITTED,
    PlanState.ACTIVE,
]


@dataclass(frozen=True)
class Tier:
    """A performance tier, mapped 1:1 to a CDB profile directive."""
    name: str
    shares: int
    utilization_limit: int
    parallel_server_limit: int

    @property
    def directive(self) -> "Directive":
        return Directive(self.shares, self.utilization_limit, self.parallel_server_limit)


@dataclass(frozen=True)
class Directive:
    """Resource limits of one directive.

    The autotask directive has no parallel server limit, so that field is
    optional.
    """
    shares: int
    utilization_limit: int
    parallel_server_limit: Optional[int] = None

    def to_dict(self) -> dict:
        d = {"shares": self.shares, "utilization_limit": self.utilization_limit}
        if self.parallel_server_limit is not None:
            d["parallel_server_limit"] = self.parallel_server_limit
        return d


@dataclass(frozen=True)
class LockdownRule:
    """Disallows ``operation`` on ``parameter`` inside lockdown ``profile``."""
    profile: str
    parameter: str
    operation: str = ALTER_SYSTEM

    @property
    def rule_name(self) -> str:
        return f"LOCK_{self.parameter}"


@dataclass
class PlanDirectives:
    """Directives a plan currently holds, as reported by the catalog."""
    profiles: dict = field(default_factory=dict)  # profile -> Directive
    default: Optional[Directive] = None
    autotask: Optional[Directive] = None


@dataclass(frozen=True)
class PlanInfo:
    plan: str
    status: str
    comments: str

    def to_dict(self) -> dict:
        return {"plan": self.plan, "status": self.status, "comments": self.comments}


@dataclass
class PlanDefinition:
    """Validated policy: the plan envelope plus its tiers and lockdown rules."""
    name: str = DEFAULT_PLAN_NAME
    comment: str = DEFAULT_PLAN_COMMENT
    tiers: list = field(default_factory=list)
    rules: list = field(default_factory=list)
    default_directive: Directive = Directive(1, 10, 10)
    autotask_directive: Directive = Directive(2, 60)
    pdb_assignments: dict = field(default_factory=dict)  # pdb -> tier name

    def get_tier(self, name: str) -> Optional[Tier]:
        for tier in self.tiers:
            if tier.name.lower() == name.lower():
                return tier
        return None

    def rules_for(self, profile: str) -> list:
        return [r for r in self.rules if r.profile == profile]

    @property
    def lockdown_profiles(self) -> list:
        """Profile names in tier declaration order."""
        return [lockdown_profile_name(t.name) for t in self.tiers]


def lockdown_profile_name(tier_name: str) -> str:
    return tier_name.upper()


@dataclass
class DriftItem:
    kind: str      # plan, directive, default, autotask, lockdown_profile, lockdown_rule, active_plan
    name: str
    expected: Optional[object] = None
    actual: Optional[object] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "expected": self.expected, "actual": self.actual}
