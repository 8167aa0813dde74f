"""
Decision engine for repo authorization.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from shared.logging import get_logger
from ..relationships.models import RequestDetails, RoleAssignment
from .permissions import DEFAULT_ROLE_ACTIONS, Action, RoleActionMap, parse_action


@dataclass(frozen=True)
class Verdict:
    """Outcome of one decision."""
    allowed: bool
    action: Action
    reason: str
    granted_by: Optional[RoleAssignment] = None


class DecisionEngine:
    """Allow/deny over a set of role assignments.

    Access is granted iff at least one assignment holds a role whose
    permitted actions include the requested one. There is no explicit deny,
    so adding assignments can only turn a deny into an allow.
    """

    def __init__(self, role_actions: RoleActionMap = DEFAULT_ROLE_ACTIONS):
        self.role_actions = role_actions
        self.logger = get_logger("authz.engine")

    def decide(self, assignments: Iterable[RoleAssignment], action) -> Verdict:
        action = parse_action(action)

        # first qualifying assignment in input order wins
        for assignment in assignments:
            if self.role_actions.permits(assignment.role, action):
                verdict = Verdict(
                    allowed=True,
                    action=action,
                    reason=f"{assignment.describe()} permits {action.value}",
                    granted_by=assignment
                )
                break
        else:
            verdict = Verdict(
                allowed=False,
                action=action,
                reason=f"No role assignment permits {action.value}"
            )

        self.logger.debug(
            "Decision evaluated",
            action=action.value,
            allowed=verdict.allowed,
            reason=verdict.reason
        )

        return verdict

    def evaluate(self, details: RequestDetails) -> Verdict:
        return self.decide(details.role_assignments, details.action)
