"""
Bearer tokens for authorization requests.

Tokens are RS256-signed JWTs carrying a ``user`` claim (``userid:<id>``) and a
list of attenuation checks. Attenuating a token only ever appends checks, so
an attenuated token authorizes a subset of what its parent authorized.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shared.errors import AuthenticationError, ValidationError
from shared.logging import get_logger
from .facts import USER_NS, action_term, as_utc, format_time, repo_term, user_term
from .permissions import Action, parse_action

ALGORITHM = "RS256"
DEFAULT_ISSUER = "repo-authz"


@dataclass(frozen=True)
class TimeBoundCheck:
    """Token is only usable up to ``not_after``."""
    not_after: datetime

    kind = "time"

    def holds(self, action: str, repo: str, now: datetime) -> bool:
        return as_utc(now) <= as_utc(self.not_after)

    def to_claim(self) -> Dict[str, Any]:
        return {"kind": self.kind, "not_after": format_time(self.not_after)}

    def to_datalog(self) -> str:
        return f"check if time($time), $time <= {format_time(self.not_after)};"


@dataclass(frozen=True)
class RepoCheck:
    """Token is only usable against one repo."""
    repo_id: int

    kind = "repo"

    def holds(self, action: str, repo: str, now: datetime) -> bool:
        return repo == repo_term(self.repo_id)

    def to_claim(self) -> Dict[str, Any]:
        return {"kind": self.kind, "repo_id": self.repo_id}

    def to_datalog(self) -> str:
        return f'check if operation($action, "{repo_term(self.repo_id)}");'


@dataclass(frozen=True)
class OperationCheck:
    """Token is only usable for one action."""
    action: Action

    kind = "operation"

    def holds(self, action: str, repo: str, now: datetime) -> bool:
        return action == action_term(self.action)

    def to_claim(self) -> Dict[str, Any]:
        return {"kind": self.kind, "action": parse_action(self.action).value}

    def to_datalog(self) -> str:
        return f'check if operation("{action_term(self.action)}", $repo);'


Check = Union[TimeBoundCheck, RepoCheck, OperationCheck]


def check_from_claim(claim: Dict[str, Any]) -> Check:
    """Rebuild a check from its token claim."""
    kind = claim.get("kind") if isinstance(claim, dict) else None
    try:
        if kind == TimeBoundCheck.kind:
            return TimeBoundCheck(datetime.fromisoformat(claim["not_after"].replace("Z", "+00:00")))
        if kind == RepoCheck.kind:
            return RepoCheck(int(claim["repo_id"]))
        if kind == OperationCheck.kind:
            return OperationCheck(parse_action(claim["action"]))
    except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
        raise AuthenticationError("Malformed token check", details={"check": claim, "error": str(e)}) from e

    raise AuthenticationError("Unknown token check", details={"check": claim})


@dataclass
class TokenClaims:
    """Verified contents of a token."""
    user: str
    checks: List[Check] = field(default_factory=list)
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class TokenIssuer:
    """Issues, attenuates and verifies signed user tokens."""

    def __init__(
        self,
        private_key: Optional[rsa.RSAPrivateKey] = None,
        ttl_seconds: int = 3600,
        issuer: str = DEFAULT_ISSUER
    ):
        self._private_key = private_key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.public_key = self._private_key.public_key()
        self.ttl_seconds = ttl_seconds
        self.issuer = issuer
        self.logger = get_logger("authz.tokens")

    @classmethod
    def from_pem_file(cls, path: Union[str, Path], ttl_seconds: int = 3600) -> "TokenIssuer":
        private_key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError(f"{path} does not hold an RSA private key")
        return cls(private_key, ttl_seconds=ttl_seconds)

    def public_key_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()

    def issue_token(self, user_id: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "sub": str(user_id),
            "user": user_term(user_id),
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl_seconds),
            "checks": []
        }

        self.logger.info("Token issued", user_id=user_id, ttl_seconds=self.ttl_seconds)
        return jwt.encode(payload, self._private_key, algorithm=ALGORITHM)

    def attenuate(self, token: str, check: Check) -> str:
        """Return a copy of ``token`` restricted by one more check."""
        payload = self._decode(token)
        payload["checks"] = list(payload.get("checks", [])) + [check.to_claim()]

        self.logger.info("Token attenuated", user=payload.get("user"), check=check.kind)
        return jwt.encode(payload, self._private_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        payload = self._decode(token)

        user = payload.get("user")
        if not isinstance(user, str) or not user.startswith(f"{USER_NS}:"):
            raise AuthenticationError("Token has no user claim")

        checks = payload.get("checks", [])
        if not isinstance(checks, list):
            raise AuthenticationError("Token checks must be a list")

        return TokenClaims(
            user=user,
            checks=[check_from_claim(claim) for claim in checks],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc) if "iat" in payload else None,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc) if "exp" in payload else None
        )

    def _decode(self, token: str) -> Dict[str, Any]:
        if token.startswith("Bearer "):
            token = token[7:]

        try:
            return jwt.decode(
                token,
                self.public_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iat"]}
            )
        except jwt.PyJWTError as e:
            self.logger.warning("Token verification failed", error=str(e))
            raise AuthenticationError(f"Invalid token: {e}", details={"token_error": str(e)}) from e
