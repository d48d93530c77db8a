"""Error hierarchy for plan and lockdown application.

Every error carries the plan/profile it concerns and the directive or rule
in question, so a failed run can be traced to the exact call.
"""

from typing import Optional


class ResourcePlanError(Exception):
    def __init__(self, message: str, plan: Optional[str] = None, profile: Optional[str] = None,
                 directive: Optional[str] = None, rule: Optional[str] = None):
        self.plan = plan
        self.profile = profile
        self.directive = directive
        self.rule = rule
        self.reason = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        context = []
        if self.plan:
            context.append(f"plan={self.plan}")
        if self.profile:
            context.append(f"profile={self.profile}")
        if self.directive:
            context.append(f"directive={self.directive}")
        if self.rule:
            context.append(f"rule={self.rule}")
        if not context:
            return message
        return f"{message} [{', '.join(context)}]"

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "plan": self.plan,
            "profile": self.profile,
            "directive": self.directive,
            "rule": self.rule,
        }


class ValidationError(ResourcePlanError):
    """Malformed tier or rule input. Raised before any external call."""


class PlanValidationError(ResourcePlanError):
    """The external validator rejected the staged directives."""


class SubmitError(ResourcePlanError):
    """Committing the pending area failed."""


class DuplicateRuleError(ResourcePlanError):
    """A lockdown rule was added twice without an explicit replace."""


class ExternalUnavailable(ResourcePlanError):
    """Connection loss or call timeout talking to the control plane."""
