"""
Relationship graph data models for the Authorization Service.

Entities are read-only snapshots of the relationship store: they are fetched
fresh per decision request and discarded once the verdict is produced.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Set

from shared.errors import InvalidRoleForResourceTypeError, UnknownRoleError


class PrincipalKind(str, Enum):
    """Kinds of principal a role can be granted to."""
    USER = "user"
    USERGROUP = "usergroup"


class ResourceKind(str, Enum):
    """Kinds of resource a role can be granted over."""
    REPO = "repo"
    REPOGROUP = "repogroup"


class Role(str, Enum):
    """Roles held over repos and repogroups."""
    OWNER = "owner"
    READER = "reader"
    WRITER = "writer"


class AssignmentScope(str, Enum):
    """The four stored principal/resource assignment shapes."""
    USER_REPO = "user-repo"
    USERGROUP_REPO = "usergroup-repo"
    USER_REPOGROUP = "user-repogroup"
    USERGROUP_REPOGROUP = "usergroup-repogroup"

    @property
    def principal_kind(self) -> PrincipalKind:
        if self in (AssignmentScope.USER_REPO, AssignmentScope.USER_REPOGROUP):
            return PrincipalKind.USER
        return PrincipalKind.USERGROUP

    @property
    def resource_kind(self) -> ResourceKind:
        if self in (AssignmentScope.USER_REPO, AssignmentScope.USERGROUP_REPO):
            return ResourceKind.REPO
        return ResourceKind.REPOGROUP


@dataclass(frozen=True)
class User:
    id: int
    name: str


@dataclass(frozen=True)
class UserGroup:
    id: int
    name: str


@dataclass(frozen=True)
class Repo:
    id: int
    name: str


@dataclass(frozen=True)
class RepoGroup:
    id: int
    name: str


@dataclass(frozen=True)
class UsergroupMembership:
    """User is a direct member of a usergroup."""
    user_id: int
    usergroup_id: int


@dataclass(frozen=True)
class UsergroupNesting:
    """Child usergroup is nested under (a member of) the parent usergroup."""
    parent_usergroup_id: int
    child_usergroup_id: int


@dataclass(frozen=True)
class RepogroupMembership:
    """Repo belongs to a repogroup."""
    repogroup_id: int
    repo_id: int


@dataclass(frozen=True)
class PrincipalRef:
    kind: PrincipalKind
    id: int


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    id: int


@dataclass(frozen=True)
class RoleAssignment:
    """A role granted to one principal over one resource."""
    principal: PrincipalRef
    resource: ResourceRef
    role: Role

    def __post_init__(self):
        if self.principal is None or self.resource is None:
            raise ValueError("role assignment must name a principal and a resource")
        if self.role == Role.OWNER and self.resource.kind == ResourceKind.REPOGROUP:
            raise InvalidRoleForResourceTypeError(self.role.value, self.resource.kind.value)

    @property
    def scope(self) -> AssignmentScope:
        if self.principal.kind == PrincipalKind.USER:
            if self.resource.kind == ResourceKind.REPO:
                return AssignmentScope.USER_REPO
            return AssignmentScope.USER_REPOGROUP
        if self.resource.kind == ResourceKind.REPO:
            return AssignmentScope.USERGROUP_REPO
        return AssignmentScope.USERGROUP_REPOGROUP

    def describe(self) -> str:
        return (
            f"{self.principal.kind.value}:{self.principal.id} -> "
            f"{self.resource.kind.value}:{self.resource.id} as {self.role.value}"
        )


@dataclass
class UsergroupRelationships:
    """Usergroup closure of a user, split by how each group was reached."""
    memberships: Set[UsergroupMembership] = field(default_factory=set)
    nestings: Set[UsergroupNesting] = field(default_factory=set)

    @property
    def usergroup_ids(self) -> FrozenSet[int]:
        """Every usergroup the user is considered present in."""
        ids = {m.usergroup_id for m in self.memberships}
        ids.update(n.child_usergroup_id for n in self.nestings)
        return frozenset(ids)

    @property
    def direct_usergroup_ids(self) -> FrozenSet[int]:
        return frozenset(m.usergroup_id for m in self.memberships)


@dataclass
class RequestDetails:
    """Everything resolved for one decision request, under one snapshot."""
    user_id: int
    username: str
    repo_id: int
    repo_name: str
    action: str
    usergroup_relationships: UsergroupRelationships = field(default_factory=UsergroupRelationships)
    repogroup_memberships: Set[RepogroupMembership] = field(default_factory=set)
    role_assignments: List[RoleAssignment] = field(default_factory=list)

    @property
    def repogroup_ids(self) -> FrozenSet[int]:
        return frozenset(m.repogroup_id for m in self.repogroup_memberships)


def decode_role(label: str, resource_kind: ResourceKind) -> Role:
    """Map a stored role label to a Role.

    Owner only exists for repos; a stored owner row against a repogroup is a
    storage contract violation and is raised, never dropped.
    """
    try:
        role = Role(label.strip().lower())
    except (ValueError, AttributeError):
        raise UnknownRoleError(str(label)) from None

    if role == Role.OWNER and resource_kind == ResourceKind.REPOGROUP:
        raise InvalidRoleForResourceTypeError(role.value, resource_kind.value)

    return role


def build_assignment(
    scope: AssignmentScope,
    principal_id: int,
    resource_id: int,
    role_label: str,
    *,
    row_id: Optional[int] = None
) -> RoleAssignment:
    """Decode one stored assignment row for the given scope."""
    try:
        role = decode_role(role_label, scope.resource_kind)
    except InvalidRoleForResourceTypeError as e:
        e.details.update({"scope": scope.value, "principal_id": principal_id, "resource_id": resource_id})
        if row_id is not None:
            e.details["row_id"] = row_id
        raise

    return RoleAssignment(
        principal=PrincipalRef(scope.principal_kind, principal_id),
        resource=ResourceRef(scope.resource_kind, resource_id),
        role=role
    )
