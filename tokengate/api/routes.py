from __future__ import annotations

from fastapi import APIRouter, Depends

from tokengate.api.gate import AuthContext, get_auth_context, require_principal
from tokengate.api.schemas import (
    Envelope,
    LoginRequest,
    SignupRequest,
    SignupResponse,
    TokenReissueRequest,
    TokenResponse,
    UserResponse,
)
from tokengate.logging import get_logger
from tokengate.service.auth import unwrap
from tokengate.service.errors import NotFoundError
from tokengate.service.runtime import get_runtime
from tokengate.service.tokens import Principal

logger = get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/signup", response_model=Envelope, status_code=201)
async def signup(body: SignupRequest):
    """Register a user.

    Raises:
        400: If the body is invalid or the passwords differ
        409: If the email is already registered
    """
    runtime = get_runtime()
    user = runtime.auth.signup(body.email, body.password, body.name)
    return Envelope(status="ok", data=SignupResponse(user_id=user.id, email=user.email))


@router.post("/login", response_model=Envelope)
async def login(body: LoginRequest):
    """Exchange email and password for an access and renewal token pair.

    Raises:
        401: If credentials are invalid
        503: If the token store is unreachable
    """
    runtime = get_runtime()
    pair = await runtime.auth.login(body.email, body.password)
    return Envelope(
        status="ok",
        data=TokenResponse(access_token=pair.access_token, refresh_token=pair.refresh_token),
    )


@router.post("/reissue", response_model=Envelope)
async def reissue(body: TokenReissueRequest):
    runtime = get_runtime()
    access_token = unwrap(await runtime.tokens.renew(body.refresh_token))
    return Envelope(status="ok", data=TokenResponse(access_token=access_token))


@router.post("/logout", response_model=Envelope)
async def logout(
    principal: Principal = Depends(require_principal),
    ctx: AuthContext = Depends(get_auth_context),
):
    runtime = get_runtime()
    unwrap(await runtime.tokens.revoke(ctx.token))
    logger.info("user_logged_out", user_id=principal.user_id)
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/me", response_model=Envelope)
async def me(principal: Principal = Depends(require_principal)):
    runtime = get_runtime()
    user = runtime.users.get_user(principal.user_id)
    if not user:
        raise NotFoundError("user not found")
    return Envelope(
        status="ok",
        data=UserResponse(id=user.id, email=user.email, name=user.name, role=user.role.value),
    )
