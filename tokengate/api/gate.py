from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from tokengate.api.policy import DEFAULT_ROUTE_POLICIES, Policy, RoutePolicies, resolve_policy
from tokengate.logging import get_logger, redact_value
from tokengate.service.errors import AuthenticationError
from tokengate.service.tokens import Principal, TokenService

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Per-request authentication result, attached to ``request.state.auth``."""

    principal: Optional[Principal] = None
    token: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.principal is not None


ANONYMOUS = AuthContext()


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class AuthenticationGate(BaseHTTPMiddleware):
    """Resolve the bearer token of every request into an ``AuthContext``.

    The gate never answers a request itself: rejected or missing credentials
    leave an anonymous context and the route policy decides what happens.
    """

    def __init__(
        self,
        app,
        tokens: Callable[[], TokenService],
        policies: RoutePolicies = DEFAULT_ROUTE_POLICIES,
    ):
        super().__init__(app)
        self._tokens = tokens
        self.policies = policies

    async def dispatch(self, request: Request, call_next):
        request.state.auth = ANONYMOUS
        if resolve_policy(request.url.path, self.policies) is Policy.IGNORED:
            return await call_next(request)
        token = extract_bearer(request.headers.get("Authorization"))
        if token:
            outcome = await self._tokens().authenticate(token)
            if outcome.ok:
                request.state.auth = AuthContext(principal=outcome.value, token=token)
            else:
                logger.debug(
                    "bearer_token_rejected",
                    reason=outcome.failure.value,
                    token=redact_value(token),
                    path=request.url.path,
                )
        return await call_next(request)


def get_auth_context(request: Request) -> AuthContext:
    return getattr(request.state, "auth", ANONYMOUS)


def require_principal(request: Request) -> Principal:
    ctx = get_auth_context(request)
    if ctx.principal is None:
        raise AuthenticationError("authentication required")
    return ctx.principal
