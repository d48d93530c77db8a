import os

from cdbplan.models.types import PlanDefinition
from cdbplan.policy.loader import load_policy


class PolicyStore:
    def __init__(self, path: str | None = None):
        self.path = path or os.environ.get("CDBPLAN_POLICY_PATH", "config/tiers.yaml")
        self._cache = None

    def load(self) -> PlanDefinition:
        if self._cache is None:
            self._cache = load_policy(self.path)
        return self._cache

    def reload(self) -> PlanDefinition:
        self._cache = None
        return self.load()


policy_store = PolicyStore()
