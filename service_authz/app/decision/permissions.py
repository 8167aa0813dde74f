"""
Role to action permission table.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.logging import get_logger
from ..relationships.models import Role

logger = get_logger("authz.permissions")


class Action(str, Enum):
    """Operations a principal can request against a repo."""
    MEMBERSHIP = "membership"
    WRITE = "write"
    READ = "read"


class RoleActionMap(BaseModel):
    """Static mapping of each role to the actions it permits.

    Roles absent from the table permit nothing.
    """
    version: str = Field(default="1", description="Table version")
    roles: Dict[Role, List[Action]] = Field(default_factory=dict, description="Role to permitted actions")

    def actions_for(self, role: Role) -> FrozenSet[Action]:
        return frozenset(self.roles.get(role, ()))

    def permits(self, role: Role, action: Action) -> bool:
        return action in self.actions_for(role)

    def roles_permitting(self, action: Action) -> List[Role]:
        return [role for role, actions in self.roles.items() if action in actions]


DEFAULT_ROLE_ACTIONS = RoleActionMap(
    version="1",
    roles={
        Role.OWNER: [Action.MEMBERSHIP, Action.WRITE, Action.READ],
        Role.WRITER: [Action.WRITE, Action.READ],
        Role.READER: [Action.READ],
    }
)


def parse_action(value: Union[str, Action]) -> Action:
    """Parse an action name, raising ValidationError for unknown actions."""
    if isinstance(value, Action):
        return value
    try:
        return Action(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown action '{value}'",
            details={"action": value, "allowed": [a.value for a in Action]}
        ) from None


def load_role_actions(path: Union[str, Path, None]) -> RoleActionMap:
    """Load a role/action table from a JSON file, or the default table."""
    if not path:
        return DEFAULT_ROLE_ACTIONS

    try:
        role_actions = RoleActionMap.model_validate_json(Path(path).read_text())
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid role/action table",
            details={"path": str(path), "errors": e.errors(include_url=False)}
        ) from e

    logger.info("Role/action table loaded", path=str(path), version=role_actions.version)
    return role_actions
