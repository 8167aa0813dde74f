"""
Authorization facade.

Runs one decision end to end: gather the request's relationships under a
single snapshot, decide in process, and when a token is supplied confirm the
decision with the policy evaluator.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from shared.errors import AccessLayerException, PolicyEvaluationFailedError
from shared.logging import get_logger, elapsed_ms, set_user_context
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation, add_span_attributes
from .decision.engine import DecisionEngine
from .decision.evaluator import PolicyEvaluator
from .decision.facts import FactSet, FactSetBuilder
from .decision.permissions import DEFAULT_ROLE_ACTIONS, Action, RoleActionMap, parse_action
from .relationships.models import RequestDetails, RoleAssignment
from .relationships.store import RelationshipStore
from .resolution.gatherer import RequestGatherer


@dataclass
class AuthorizationResult:
    """Final answer for one authorization request."""
    allowed: bool
    action: Action
    reason: str
    granted_by: Optional[RoleAssignment] = None
    trace: List[str] = field(default_factory=list)
    policy_evaluated: bool = False


class Authorizer:
    """Composes gathering, decision and policy evaluation."""

    def __init__(
        self,
        store: RelationshipStore,
        role_actions: RoleActionMap = DEFAULT_ROLE_ACTIONS,
        evaluator: Optional[PolicyEvaluator] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.role_actions = role_actions
        self.evaluator = evaluator
        self.metrics = metrics
        self.gatherer = RequestGatherer(store)
        self.engine = DecisionEngine(role_actions)
        self.fact_builder = FactSetBuilder(role_actions)
        self.logger = get_logger("authz.authorizer")

    async def check(
        self,
        user_id: int,
        repo_name: str,
        action,
        token: Optional[str] = None
    ) -> AuthorizationResult:
        start_time = time.time()
        action = parse_action(action)
        set_user_context(str(user_id))

        with trace_operation("authz.check", user_id=user_id, repo=repo_name, action=action.value):
            try:
                details = await self.gatherer.gather(user_id, repo_name, action.value)
                self._observe_closure(details)

                verdict = self.engine.evaluate(details)
                result = AuthorizationResult(
                    allowed=verdict.allowed,
                    action=action,
                    reason=verdict.reason,
                    granted_by=verdict.granted_by
                )

                if token is not None:
                    result = await self._confirm_with_policy(details, result, token)
            except AccessLayerException as e:
                self.logger.warning(
                    "Authorization aborted",
                    user_id=user_id,
                    repo=repo_name,
                    action=action.value,
                    code=e.code,
                    error=e.message
                )
                raise

            add_span_attributes(allowed=result.allowed, policy_evaluated=result.policy_evaluated)

        duration = time.time() - start_time
        if self.metrics is not None:
            self.metrics.record_decision(action.value, result.allowed, duration)

        self.logger.info(
            "Decision made",
            user_id=user_id,
            repo=repo_name,
            action=action.value,
            allowed=result.allowed,
            reason=result.reason,
            policy_evaluated=result.policy_evaluated,
            duration_ms=elapsed_ms(start_time)
        )

        return result

    async def facts(self, user_id: int, repo_name: str, action, now: Optional[datetime] = None) -> FactSet:
        """Fact set the policy evaluator would see for this request."""
        action = parse_action(action)
        details = await self.gatherer.gather(user_id, repo_name, action.value)
        return self.fact_builder.build(details, action, now)

    async def _confirm_with_policy(
        self,
        details: RequestDetails,
        result: AuthorizationResult,
        token: str
    ) -> AuthorizationResult:
        if self.evaluator is None:
            raise PolicyEvaluationFailedError("No policy evaluator configured for token checks")

        fact_set = self.fact_builder.build(details, result.action, datetime.now(timezone.utc))
        outcome = await self.evaluator.evaluate(fact_set, token)

        if outcome.denied_by_checks:
            return AuthorizationResult(
                allowed=False,
                action=result.action,
                reason=f"Token restrictions not satisfied: {'; '.join(outcome.failed_checks)}",
                trace=outcome.trace,
                policy_evaluated=True
            )

        # Both sides read the same relationships, so they must agree
        if outcome.allowed != result.allowed:
            raise PolicyEvaluationFailedError(
                "Policy evaluator disagrees with relationship decision",
                details={
                    "user_id": details.user_id,
                    "repo_id": details.repo_id,
                    "action": result.action.value,
                    "decision": result.allowed,
                    "policy": outcome.allowed
                }
            )

        result.trace = outcome.trace
        result.policy_evaluated = True
        return result

    def _observe_closure(self, details: RequestDetails):
        if self.metrics is not None:
            self.metrics.observe_histogram(
                "authz_closure_size",
                len(details.usergroup_relationships.usergroup_ids)
            )
