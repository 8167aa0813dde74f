"""
Fact sets for the policy evaluator.

A request's relationships are rendered as typed facts over namespaced string
terms. Namespacing keeps ids of different entity kinds apart, so
``userid:1`` and ``usergroupid:1`` never unify.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

from shared.logging import get_logger
from ..relationships.models import (
    PrincipalKind, RequestDetails, ResourceKind, Role, RoleAssignment
)
from .permissions import DEFAULT_ROLE_ACTIONS, Action, RoleActionMap, parse_action

USER_NS = "userid"
USERGROUP_NS = "usergroupid"
REPO_NS = "repo"
REPOGROUP_NS = "repogroupid"
ROLE_NS = "role"
ACTION_NS = "action"

Term = Union[str, datetime, Tuple[str, ...]]

# Arity of every fact the evaluator understands
FACT_ARITY: Dict[str, int] = {
    "user": 1,
    "operation": 2,
    "time": 1,
    "repo_role_actions": 2,
    "usergroup": 2,
    "repogroup": 2,
    "role": 3,
}

AUTHORIZATION_RULES = """\
repo($repo) <-
  operation($action, $repo);

user_authority($member, $member) <-
  user($member);
user_authority($member, $group) <-
  usergroup($group, $member),
  $member.starts_with("userid:");
user_authority($member, $subgroup) <-
  usergroup($group, $subgroup),
  $subgroup.starts_with("usergroupid:"),
  user_authority($member, $group);

repo_authority($member, $member) <-
  repo($member);
repo_authority($member, $group) <-
  repogroup($group, $member);

req_role($role, $action) <-
  operation($action, $repo),
  repo_role_actions($role, $permissions),
  $permissions.contains($action);

allow if
  user($user),
  operation($action, $repo),
  req_role($role, $action),
  user_authority($user, $principal),
  repo_authority($repo, $resource),
  role($principal, $resource, $role);
"""


def namespaced(namespace: str, symbol) -> str:
    return f"{namespace}:{symbol}"


def user_term(user_id: int) -> str:
    return namespaced(USER_NS, user_id)


def usergroup_term(usergroup_id: int) -> str:
    return namespaced(USERGROUP_NS, usergroup_id)


def repo_term(repo_id: int) -> str:
    return namespaced(REPO_NS, repo_id)


def repogroup_term(repogroup_id: int) -> str:
    return namespaced(REPOGROUP_NS, repogroup_id)


def role_term(role: Role) -> str:
    return namespaced(ROLE_NS, Role(role).value)


def action_term(action) -> str:
    return namespaced(ACTION_NS, parse_action(action).value)


def principal_term(assignment: RoleAssignment) -> str:
    if assignment.principal.kind == PrincipalKind.USER:
        return user_term(assignment.principal.id)
    return usergroup_term(assignment.principal.id)


def resource_term(assignment: RoleAssignment) -> str:
    if assignment.resource.kind == ResourceKind.REPO:
        return repo_term(assignment.resource.id)
    return repogroup_term(assignment.resource.id)


def quote(value: str) -> str:
    """Render a Datalog string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_time(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def render_term(term: Term) -> str:
    if isinstance(term, datetime):
        return format_time(term)
    if isinstance(term, (tuple, list)):
        return "[" + ", ".join(render_term(t) for t in term) + "]"
    if isinstance(term, str):
        return quote(term)
    raise TypeError(f"unsupported term type: {type(term).__name__}")


@dataclass(frozen=True)
class Fact:
    """A named tuple of terms, e.g. ``usergroup("usergroupid:1", "userid:4")``."""
    name: str
    terms: Tuple[Term, ...]

    def to_datalog(self) -> str:
        return f"{self.name}({', '.join(render_term(t) for t in self.terms)});"


@dataclass
class FactSet:
    """Facts describing one authorization request."""
    facts: List[Fact] = field(default_factory=list)

    def add(self, name: str, *terms: Term) -> Fact:
        fact = Fact(name, tuple(terms))
        if fact not in self.facts:
            self.facts.append(fact)
        return fact

    def named(self, name: str) -> List[Tuple[Term, ...]]:
        return [fact.terms for fact in self.facts if fact.name == name]

    def to_datalog(self, include_rules: bool = True) -> str:
        lines = [fact.to_datalog() for fact in self.facts]
        if include_rules:
            lines.extend(["", AUTHORIZATION_RULES])
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.facts)


class FactSetBuilder:
    """Builds the fact set for a gathered request."""

    def __init__(self, role_actions: RoleActionMap = DEFAULT_ROLE_ACTIONS):
        self.role_actions = role_actions
        self.logger = get_logger("authz.facts")

    def build(
        self,
        details: RequestDetails,
        action: Optional[Action] = None,
        now: Optional[datetime] = None
    ) -> FactSet:
        action = parse_action(action or details.action)
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)

        fact_set = FactSet()
        fact_set.add("user", user_term(details.user_id))
        fact_set.add("operation", action_term(action), repo_term(details.repo_id))
        fact_set.add("time", now)

        for role, actions in self.role_actions.roles.items():
            fact_set.add("repo_role_actions", role_term(role), tuple(action_term(a) for a in actions))

        relationships = details.usergroup_relationships
        for membership in sorted(relationships.memberships, key=lambda m: (m.usergroup_id, m.user_id)):
            fact_set.add("usergroup", usergroup_term(membership.usergroup_id), user_term(membership.user_id))
        for nesting in sorted(relationships.nestings, key=lambda n: (n.parent_usergroup_id, n.child_usergroup_id)):
            fact_set.add(
                "usergroup",
                usergroup_term(nesting.parent_usergroup_id),
                usergroup_term(nesting.child_usergroup_id)
            )

        for membership in sorted(details.repogroup_memberships, key=lambda m: (m.repogroup_id, m.repo_id)):
            fact_set.add("repogroup", repogroup_term(membership.repogroup_id), repo_term(membership.repo_id))

        for assignment in details.role_assignments:
            fact_set.add("role", principal_term(assignment), resource_term(assignment), role_term(assignment.role))

        self.logger.debug(
            "Fact set built",
            user_id=details.user_id,
            repo_id=details.repo_id,
            action=action.value,
            facts=len(fact_set)
        )

        return fact_set


def validate_fact_set(fact_set: FactSet) -> Sequence[str]:
    """Return the problems that make a fact set unusable, if any."""
    problems = []
    for fact in fact_set.facts:
        arity = FACT_ARITY.get(fact.name)
        if arity is None:
            problems.append(f"unknown fact '{fact.name}'")
        elif len(fact.terms) != arity:
            problems.append(f"fact '{fact.name}' expects {arity} terms, got {len(fact.terms)}")

    for name in ("user", "operation", "time"):
        count = len(fact_set.named(name))
        if count != 1:
            problems.append(f"expected exactly one '{name}' fact, got {count}")

    return problems
