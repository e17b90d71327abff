"""Route access policy: one ordered table decides how each path is guarded."""

from __future__ import annotations

from enum import Enum
from fnmatch import fnmatchcase
from typing import Sequence, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from tokengate.api.error_handling import unauthorized_response
from tokengate.logging import get_logger

logger = get_logger(__name__)


class Policy(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    # Skips the authentication gate entirely
    IGNORED = "ignored"


RoutePolicies = Sequence[Tuple[str, Policy]]

# First match wins
DEFAULT_ROUTE_POLICIES: RoutePolicies = (
    ("/api/users/signup", Policy.PUBLIC),
    ("/api/users/login", Policy.PUBLIC),
    ("/api/users/reissue", Policy.PUBLIC),
    ("/healthz", Policy.IGNORED),
    ("/docs", Policy.IGNORED),
    ("/docs/*", Policy.IGNORED),
    ("/redoc", Policy.IGNORED),
    ("/openapi.json", Policy.IGNORED),
    ("/api/*", Policy.AUTHENTICATED),
)


def resolve_policy(path: str, policies: RoutePolicies = DEFAULT_ROUTE_POLICIES) -> Policy:
    """Return the policy of the first pattern matching ``path``; unmatched paths require auth.

    A trailing slash is ignored so ``/api/users/login/`` resolves like
    ``/api/users/login`` and reaches the router's redirect.
    """
    path = path.rstrip("/") or "/"
    for pattern, policy in policies:
        if fnmatchcase(path, pattern):
            return policy
    return Policy.AUTHENTICATED


class RoutePolicyMiddleware(BaseHTTPMiddleware):
    """Reject requests to authenticated routes that carry no principal.

    Runs inside the authentication gate and reads the context it left on
    ``request.state.auth``.
    """

    def __init__(self, app, policies: RoutePolicies = DEFAULT_ROUTE_POLICIES):
        super().__init__(app)
        self.policies = policies

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        policy = resolve_policy(request.url.path, self.policies)
        if policy is Policy.AUTHENTICATED:
            ctx = getattr(request.state, "auth", None)
            if ctx is None or ctx.principal is None:
                logger.info(
                    "route_requires_authentication",
                    path=request.url.path,
                    method=request.method,
                )
                return unauthorized_response()
        return await call_next(request)
