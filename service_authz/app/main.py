"""
Authorization service for repository access decisions.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .authorizer import AuthorizationResult, Authorizer
from .decision.evaluator import RuleEvaluator
from .decision.permissions import Action, load_role_actions
from .decision.tokens import OperationCheck, RepoCheck, TimeBoundCheck, TokenIssuer
from .relationships.memory import InMemoryRelationshipStore
from .relationships.postgres import PostgresRelationshipStore
from .relationships.store import RelationshipStore


class AuthzCheckRequest(BaseModel):
    """Request model for an authorization check."""
    user_id: int = Field(..., description="User ID")
    repo: str = Field(..., description="Repo name")
    action: Action = Field(..., description="Requested action")
    token: Optional[str] = Field(None, description="User token; enables policy evaluation")


class GrantResponse(BaseModel):
    """Role assignment that granted access."""
    principal_kind: str
    principal_id: int
    resource_kind: str
    resource_id: int
    role: str


class AuthzCheckResponse(BaseModel):
    """Response model for an authorization check."""
    allowed: bool
    action: Action
    reason: str
    granted_by: Optional[GrantResponse] = None
    trace: List[str] = Field(default_factory=list)
    policy_evaluated: bool = False


class FactSetResponse(BaseModel):
    """Serialized fact set for a request."""
    facts: str
    count: int


class TokenRequest(BaseModel):
    """Request model for issuing a (possibly attenuated) token."""
    user_id: int = Field(..., description="User ID")
    not_after: Optional[datetime] = Field(None, description="Restrict use to before this time")
    repo_id: Optional[int] = Field(None, description="Restrict use to one repo")
    action: Optional[Action] = Field(None, description="Restrict use to one action")


class TokenResponse(BaseModel):
    """Issued token."""
    token: str
    token_type: str = "Bearer"
    expires_in: int
    checks: List[str] = Field(default_factory=list)


def to_check_response(result: AuthorizationResult) -> AuthzCheckResponse:
    granted_by = None
    if result.granted_by is not None:
        assignment = result.granted_by
        granted_by = GrantResponse(
            principal_kind=assignment.principal.kind.value,
            principal_id=assignment.principal.id,
            resource_kind=assignment.resource.kind.value,
            resource_id=assignment.resource.id,
            role=assignment.role.value
        )

    return AuthzCheckResponse(
        allowed=result.allowed,
        action=result.action,
        reason=result.reason,
        granted_by=granted_by,
        trace=result.trace,
        policy_evaluated=result.policy_evaluated
    )


class AuthzService(BaseService):
    """Authorization service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[RelationshipStore] = None,
        token_issuer: Optional[TokenIssuer] = None
    ):
        super().__init__("authz", 8011, config or get_config("authz", 8011))

        self.store = store or self._create_store()
        self.token_issuer = token_issuer or self._create_token_issuer()
        self.role_actions = load_role_actions(self.config.role_actions_file)
        self.authorizer = Authorizer(
            self.store,
            role_actions=self.role_actions,
            evaluator=RuleEvaluator(self.token_issuer),
            metrics=self.metrics
        )

        self._setup_authz_routes()

        self.app.state.authz_service = self

    def _create_store(self) -> RelationshipStore:
        if self.config.store_backend == "memory":
            return InMemoryRelationshipStore.example_dataset()
        return PostgresRelationshipStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
            timeout=self.config.store_timeout_seconds
        )

    def _create_token_issuer(self) -> TokenIssuer:
        if self.config.token_private_key_file:
            return TokenIssuer.from_pem_file(
                self.config.token_private_key_file,
                ttl_seconds=self.config.token_ttl_seconds
            )
        # Ephemeral key; tokens do not survive a restart
        return TokenIssuer(ttl_seconds=self.config.token_ttl_seconds)

    def _setup_authz_routes(self):
        """Set up authorization-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "authz",
                "message": "Repository Authorization Service",
                "version": "1.0.0",
                "capabilities": ["decisions", "fact_sets", "tokens"],
                "role_actions_version": self.role_actions.version
            }

        @self.app.post("/authz/check", response_model=AuthzCheckResponse)
        async def check(request: AuthzCheckRequest):
            """Decide whether a user may perform an action on a repo."""
            result = await self.authorizer.check(
                request.user_id,
                request.repo,
                request.action,
                token=request.token
            )
            return to_check_response(result)

        @self.app.post("/authz/facts", response_model=FactSetResponse)
        async def facts(request: AuthzCheckRequest):
            """Return the fact set the policy evaluator would receive."""
            fact_set = await self.authorizer.facts(request.user_id, request.repo, request.action)
            return FactSetResponse(facts=fact_set.to_datalog(), count=len(fact_set))

        @self.app.post("/authz/tokens", response_model=TokenResponse)
        async def issue_token(request: TokenRequest):
            """Issue a user token, attenuated by any requested restrictions."""
            token = self.token_issuer.issue_token(request.user_id)

            checks = []
            if request.not_after is not None:
                checks.append(TimeBoundCheck(request.not_after))
            if request.repo_id is not None:
                checks.append(RepoCheck(request.repo_id))
            if request.action is not None:
                checks.append(OperationCheck(request.action))

            for check in checks:
                token = self.token_issuer.attenuate(token, check)

            return TokenResponse(
                token=token,
                expires_in=self.token_issuer.ttl_seconds,
                checks=[check.to_datalog() for check in checks]
            )

    async def _check_dependencies(self):
        """Check authorization service dependencies."""
        name = "postgres" if isinstance(self.store, PostgresRelationshipStore) else "store"
        try:
            healthy = await self.store.health_check()
        except Exception:
            healthy = False
        return {name: "ok" if healthy else "error"}

    async def start(self):
        """Start authorization service components."""
        await self.store.start()

        if self.config.seed_example_data and isinstance(self.store, PostgresRelationshipStore):
            await self.store.create_schema()
            await self.store.load_example_dataset()

        self.logger.info("Authorization service started", store=type(self.store).__name__)

    async def stop(self):
        """Stop authorization service components."""
        await self.store.stop()
        self.logger.info("Authorization service stopped")


def create_app():
    """Create authorization service application."""
    service = AuthzService()
    return service.app


if __name__ == "__main__":
    service = AuthzService()
    service.run()
