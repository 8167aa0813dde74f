"""
Policy evaluation over fact sets.

``PolicyEvaluator`` is the boundary to whatever engine interprets the fact
set and token. ``RuleEvaluator`` is the in-process implementation: it derives
the ``user_authority``, ``repo_authority`` and ``req_role`` relations to a
fixed point, enforces the token's attenuation checks, then looks for a role
fact that satisfies the ``allow`` policy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Set, Tuple

from shared.errors import AuthenticationError, PolicyEvaluationFailedError
from shared.logging import get_logger
from .facts import USER_NS, USERGROUP_NS, FactSet, validate_fact_set
from .tokens import TokenIssuer


@dataclass
class PolicyOutcome:
    """Evaluator verdict with the facts and rules that produced it."""
    allowed: bool
    trace: List[str] = field(default_factory=list)
    failed_checks: List[str] = field(default_factory=list)

    @property
    def denied_by_checks(self) -> bool:
        return bool(self.failed_checks)


class PolicyEvaluator(ABC):
    """Interprets a fact set against a user token."""

    @abstractmethod
    async def evaluate(self, fact_set: FactSet, token: str) -> PolicyOutcome:
        """Evaluate the fact set; raise PolicyEvaluationFailedError if it cannot."""


class RuleEvaluator(PolicyEvaluator):
    """Evaluates the fixed authorization rules in process."""

    def __init__(self, token_issuer: TokenIssuer):
        self.token_issuer = token_issuer
        self.logger = get_logger("authz.evaluator")

    async def evaluate(self, fact_set: FactSet, token: str) -> PolicyOutcome:
        problems = list(validate_fact_set(fact_set))
        if not problems and not isinstance(fact_set.named("time")[0][0], datetime):
            problems.append("time fact must hold a datetime")
        if problems:
            raise PolicyEvaluationFailedError("Malformed fact set", details={"problems": problems})

        try:
            claims = self.token_issuer.verify(token)
        except AuthenticationError as e:
            raise PolicyEvaluationFailedError(
                "Token rejected by policy evaluator",
                details={"reason": e.message, **e.details}
            ) from e

        (request_user,) = fact_set.named("user")[0]
        action, repo = fact_set.named("operation")[0]
        (now,) = fact_set.named("time")[0]

        failed_checks = []
        if claims.user != request_user:
            failed_checks.append(f'check if user("{request_user}");')
        for check in claims.checks:
            if not check.holds(action, repo, now):
                failed_checks.append(check.to_datalog())

        if failed_checks:
            self.logger.info("Token checks failed", user=request_user, failed_checks=failed_checks)
            return PolicyOutcome(
                allowed=False,
                trace=[f"failed: {check}" for check in failed_checks],
                failed_checks=failed_checks
            )

        user_authority = self._user_authority(fact_set)
        repo_authority = self._repo_authority(fact_set)
        req_roles = self._req_roles(fact_set)

        trace = [f"user_authority({member}, {group})" for member, group in sorted(user_authority)]
        trace.extend(f"repo_authority({member}, {group})" for member, group in sorted(repo_authority))
        trace.extend(f"req_role({role}, {act})" for role, act in sorted(req_roles))

        match = self._match_allow(fact_set, user_authority, repo_authority, req_roles)
        if match is not None:
            principal, resource, role = match
            trace.append(f"allow: role({principal}, {resource}, {role})")
        else:
            trace.append("no allow policy matched")

        self.logger.debug(
            "Policy evaluated",
            user=request_user,
            operation=action,
            repo=repo,
            allowed=match is not None,
            derived=len(trace) - 1
        )

        return PolicyOutcome(allowed=match is not None, trace=trace)

    def _user_authority(self, fact_set: FactSet) -> Set[Tuple[str, str]]:
        authority = {(user, user) for (user,) in fact_set.named("user")}
        edges = fact_set.named("usergroup")

        for group, member in edges:
            if member.startswith(f"{USER_NS}:"):
                authority.add((member, group))

        subgroup_edges = [(group, sub) for group, sub in edges if sub.startswith(f"{USERGROUP_NS}:")]
        changed = True
        while changed:
            changed = False
            for group, subgroup in subgroup_edges:
                for member, held in list(authority):
                    if held == group and (member, subgroup) not in authority:
                        authority.add((member, subgroup))
                        changed = True

        return authority

    def _repo_authority(self, fact_set: FactSet) -> Set[Tuple[str, str]]:
        authority = {(repo, repo) for _, repo in fact_set.named("operation")}
        authority.update((member, group) for group, member in fact_set.named("repogroup"))
        return authority

    def _req_roles(self, fact_set: FactSet) -> Set[Tuple[str, str]]:
        return {
            (role, action)
            for action, _ in fact_set.named("operation")
            for role, permissions in fact_set.named("repo_role_actions")
            if action in permissions
        }

    def _match_allow(self, fact_set, user_authority, repo_authority, req_roles):
        for (user,) in fact_set.named("user"):
            for action, repo in fact_set.named("operation"):
                for principal, resource, role in fact_set.named("role"):
                    if (
                        (role, action) in req_roles
                        and (user, principal) in user_authority
                        and (repo, resource) in repo_authority
                    ):
                        return principal, resource, role
        return None
