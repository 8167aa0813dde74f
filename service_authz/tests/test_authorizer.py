"""
Unit tests for the Authorizer facade.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import NotFoundError, PolicyEvaluationFailedError, ValidationError
from shared.metrics import MetricsCollector
from service_authz.app.authorizer import Authorizer
from service_authz.app.decision.evaluator import PolicyOutcome, RuleEvaluator
from service_authz.app.decision.permissions import Action
from service_authz.app.decision.tokens import RepoCheck, TokenIssuer
from service_authz.app.relationships.memory import InMemoryRelationshipStore
from service_authz.app.relationships.models import PrincipalKind, Role


@pytest.fixture(scope="module")
def issuer():
    """Token issuer shared by the authorizer tests."""
    return TokenIssuer(ttl_seconds=600)


class TestAuthorizer:
    """Test cases for Authorizer."""

    @pytest.fixture
    def metrics(self):
        """Metrics collector with its own registry."""
        return MetricsCollector("authz")

    @pytest.fixture
    def authorizer(self, issuer, metrics):
        """Authorizer over the example dataset."""
        return Authorizer(
            InMemoryRelationshipStore.example_dataset(),
            evaluator=RuleEvaluator(issuer),
            metrics=metrics
        )

    @pytest.mark.asyncio
    async def test_allow_records_metrics(self, authorizer, metrics):
        """Test an allow is returned and counted."""
        result = await authorizer.check(4, "Bravo", "read")

        assert result.allowed is True
        assert result.action == Action.READ
        assert result.granted_by.principal.kind == PrincipalKind.USERGROUP
        assert result.granted_by.role == Role.WRITER
        assert result.policy_evaluated is False
        assert metrics.registry.get_sample_value(
            "authz_decisions_total", {"action": "read", "outcome": "allow"}
        ) == 1.0
        assert metrics.registry.get_sample_value("authz_closure_size_count") == 1.0

    @pytest.mark.asyncio
    async def test_deny(self, authorizer, metrics):
        """Test a deny is a result, not an error."""
        result = await authorizer.check(1, "Alpha", Action.READ)

        assert result.allowed is False
        assert result.granted_by is None
        assert metrics.registry.get_sample_value(
            "authz_decisions_total", {"action": "read", "outcome": "deny"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_errors_are_not_decisions(self, authorizer, metrics):
        """Test aborted requests propagate and are not counted."""
        with pytest.raises(NotFoundError):
            await authorizer.check(4, "Delta", "read")

        assert metrics.registry.get_sample_value(
            "authz_decisions_total", {"action": "read", "outcome": "deny"}
        ) is None

    @pytest.mark.asyncio
    async def test_unknown_action(self, authorizer):
        """Test an unknown action is a validation error."""
        with pytest.raises(ValidationError):
            await authorizer.check(4, "Bravo", "delete")

    @pytest.mark.asyncio
    async def test_token_confirms_decision(self, authorizer, issuer):
        """Test a token routes the decision through the evaluator."""
        result = await authorizer.check(4, "Bravo", "read", token=issuer.issue_token(4))

        assert result.allowed is True
        assert result.policy_evaluated is True
        assert result.trace[-1].startswith("allow:")
        assert result.granted_by is not None

    @pytest.mark.asyncio
    async def test_token_confirms_deny(self, authorizer, issuer):
        """Test both sides agreeing on deny is a plain deny."""
        result = await authorizer.check(1, "Alpha", "read", token=issuer.issue_token(1))

        assert result.allowed is False
        assert result.policy_evaluated is True

    @pytest.mark.asyncio
    async def test_attenuated_token_denies(self, authorizer, issuer):
        """Test failing token checks turn an allow into a deny."""
        token = issuer.attenuate(issuer.issue_token(4), RepoCheck(3))

        result = await authorizer.check(4, "Bravo", "read", token=token)

        assert result.allowed is False
        assert result.granted_by is None
        assert result.reason.startswith("Token restrictions not satisfied")

    @pytest.mark.asyncio
    async def test_evaluator_disagreement(self):
        """Test diverging verdicts are reported, never silently resolved."""
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=PolicyOutcome(allowed=False, trace=["no allow policy matched"]))
        authorizer = Authorizer(InMemoryRelationshipStore.example_dataset(), evaluator=evaluator)

        with pytest.raises(PolicyEvaluationFailedError) as exc_info:
            await authorizer.check(4, "Bravo", "read", token="opaque")

        assert exc_info.value.details["decision"] is True
        assert exc_info.value.details["policy"] is False

    @pytest.mark.asyncio
    async def test_token_without_evaluator(self):
        """Test a token cannot be honoured without an evaluator."""
        authorizer = Authorizer(InMemoryRelationshipStore.example_dataset())

        with pytest.raises(PolicyEvaluationFailedError):
            await authorizer.check(4, "Bravo", "read", token="opaque")

    @pytest.mark.asyncio
    async def test_facts(self, authorizer):
        """Test the fact set for a request."""
        fact_set = await authorizer.facts(2, "Charlie", "write")

        assert fact_set.named("operation") == [("action:write", "repo:3")]
        assert ("userid:2", "repo:3", "role:owner") in fact_set.named("role")
