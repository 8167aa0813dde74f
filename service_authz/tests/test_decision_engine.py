"""
Unit tests for the decision engine and role/action table.
"""

import json

import pytest

from shared.errors import ValidationError
from service_authz.app.decision.engine import DecisionEngine
from service_authz.app.decision.permissions import (
    DEFAULT_ROLE_ACTIONS, Action, RoleActionMap, load_role_actions, parse_action
)
from service_authz.app.relationships.models import (
    AssignmentScope, RequestDetails, Role, build_assignment
)


def grant(role: str, scope=AssignmentScope.USER_REPO, principal_id=1, resource_id=1):
    return build_assignment(scope, principal_id, resource_id, role)


class TestDecisionEngine:
    """Test cases for DecisionEngine."""

    @pytest.fixture
    def engine(self):
        """Engine over the default table."""
        return DecisionEngine()

    @pytest.mark.parametrize("role,action,expected", [
        ("owner", Action.MEMBERSHIP, True),
        ("owner", Action.WRITE, True),
        ("owner", Action.READ, True),
        ("writer", Action.MEMBERSHIP, False),
        ("writer", Action.WRITE, True),
        ("writer", Action.READ, True),
        ("reader", Action.MEMBERSHIP, False),
        ("reader", Action.WRITE, False),
        ("reader", Action.READ, True),
    ])
    def test_role_action_table(self, engine, role, action, expected):
        """Test every role/action pair of the default table."""
        verdict = engine.decide([grant(role)], action)

        assert verdict.allowed is expected
        assert verdict.action == action

    def test_default_deny(self, engine):
        """Test no assignments means deny."""
        verdict = engine.decide([], Action.READ)

        assert verdict.allowed is False
        assert verdict.granted_by is None
        assert verdict.reason == "No role assignment permits read"

    def test_first_qualifying_assignment_wins(self, engine):
        """Test the grant reported is the first that qualifies."""
        reader = grant("reader")
        owner = grant("owner", principal_id=2)
        writer = grant("writer", scope=AssignmentScope.USERGROUP_REPOGROUP)

        verdict = engine.decide([reader, owner, writer], Action.READ)
        assert verdict.granted_by == reader

        verdict = engine.decide([reader, owner, writer], Action.WRITE)
        assert verdict.granted_by == owner
        assert "permits write" in verdict.reason

    def test_adding_assignments_never_revokes(self, engine):
        """Test decisions are monotonic in the assignment set."""
        base = [grant("reader")]
        extras = [grant("writer", principal_id=2), grant("owner", principal_id=3)]

        for action in Action:
            before = engine.decide(base, action).allowed
            after = engine.decide(base + extras, action).allowed
            assert not before or after

    def test_string_action(self, engine):
        """Test action names are accepted as strings."""
        assert engine.decide([grant("writer")], "write").allowed is True

    def test_unknown_action(self, engine):
        """Test unknown actions are rejected."""
        with pytest.raises(ValidationError):
            engine.decide([grant("owner")], "delete")

    def test_injected_table(self):
        """Test the engine reads the table it is given."""
        table = RoleActionMap(version="2", roles={Role.READER: [Action.READ, Action.WRITE]})
        engine = DecisionEngine(table)

        assert engine.decide([grant("reader")], Action.WRITE).allowed is True
        assert engine.decide([grant("owner")], Action.READ).allowed is False

    def test_evaluate_request_details(self, engine):
        """Test evaluation straight from gathered details."""
        details = RequestDetails(
            user_id=2,
            username="Noah",
            repo_id=3,
            repo_name="Charlie",
            action="write",
            role_assignments=[grant("owner", principal_id=2, resource_id=3)]
        )

        verdict = engine.evaluate(details)

        assert verdict.allowed is True
        assert verdict.granted_by.role == Role.OWNER


class TestRoleActionMap:
    """Test cases for the role/action table."""

    def test_default_table(self):
        """Test the default table contents."""
        assert DEFAULT_ROLE_ACTIONS.actions_for(Role.OWNER) == {Action.MEMBERSHIP, Action.WRITE, Action.READ}
        assert DEFAULT_ROLE_ACTIONS.actions_for(Role.WRITER) == {Action.WRITE, Action.READ}
        assert DEFAULT_ROLE_ACTIONS.actions_for(Role.READER) == {Action.READ}
        assert DEFAULT_ROLE_ACTIONS.roles_permitting(Action.MEMBERSHIP) == [Role.OWNER]

    def test_load_default_when_unset(self):
        """Test no path yields the default table."""
        assert load_role_actions(None) is DEFAULT_ROLE_ACTIONS

    def test_load_from_file(self, tmp_path):
        """Test loading a table from JSON."""
        path = tmp_path / "roles.json"
        path.write_text(json.dumps({
            "version": "2024-01",
            "roles": {"owner": ["membership", "write", "read"], "reader": ["read"]}
        }))

        table = load_role_actions(str(path))

        assert table.version == "2024-01"
        assert table.permits(Role.READER, Action.READ)
        assert not table.permits(Role.WRITER, Action.READ)

    def test_load_invalid_file(self, tmp_path):
        """Test an invalid table is rejected."""
        path = tmp_path / "roles.json"
        path.write_text(json.dumps({"roles": {"owner": ["admin"]}}))

        with pytest.raises(ValidationError) as exc_info:
            load_role_actions(path)

        assert exc_info.value.details["path"] == str(path)

    def test_parse_action(self):
        """Test action parsing is case-insensitive."""
        assert parse_action(" READ ") == Action.READ
        assert parse_action(Action.WRITE) == Action.WRITE
