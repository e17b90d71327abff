from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, Protocol, TypeVar

from tokengate.config import Settings
from tokengate.logging import get_logger, redact_value
from tokengate.service.codec import ClaimSet, TokenCodec, VerificationFailure
from tokengate.storage.errors import StoreUnavailable
from tokengate.storage.models import User

logger = get_logger(__name__)

RENEWAL_KEY_PREFIX = "RT:"
DENYLIST_VALUE = "logout"

T = TypeVar("T")


class TokenFailure(str, Enum):
    MALFORMED_TOKEN = "malformed_token"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    REVOKED = "revoked"
    RENEWAL_MISMATCH = "renewal_mismatch"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    INVALID_RENEWAL_TOKEN = "invalid_renewal_token"
    INVALID_ACCESS_TOKEN = "invalid_access_token"

    @classmethod
    def from_verification(cls, failure: VerificationFailure) -> "TokenFailure":
        return cls(failure.value)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a lifecycle operation: either ``value`` or ``failure``.

    ``cause`` keeps the codec-level reason when a failure wraps one, e.g. an
    expired renewal token reported as ``INVALID_RENEWAL_TOKEN``.
    """

    value: Optional[T] = None
    failure: Optional[TokenFailure] = None
    cause: Optional[TokenFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls, failure: TokenFailure, *, cause: Optional[TokenFailure] = None
    ) -> "Outcome[T]":
        return cls(failure=failure, cause=cause)


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(user_id=user.id, email=user.email, role=user.role.value)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class RevocationStore(Protocol):
    async def set(self, key: str, value: str, ttl_seconds: float) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when absent. Diagnostic only."""
        ...


class PrincipalDirectory(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...


def renewal_key(email: str) -> str:
    return f"{RENEWAL_KEY_PREFIX}{email}"


class TokenService:
    """Issue, renew, revoke and authenticate bearer tokens.

    Every operation returns an ``Outcome``; token problems and store outages
    are reported as ``TokenFailure`` values instead of raised. Nothing here
    retries: a store failure is surfaced once and the caller decides.
    """

    def __init__(
        self,
        codec: TokenCodec,
        store: RevocationStore,
        directory: PrincipalDirectory,
        settings: Settings,
    ) -> None:
        self.codec = codec
        self.store = store
        self.directory = directory
        self.settings = settings
        self.logger = logger

    def _sign_access(self, principal: Principal) -> str:
        return self.codec.sign(
            principal.email,
            self.settings.access_token_ttl_seconds,
            role=principal.role,
            user_id=principal.user_id,
        )

    async def issue(self, principal: Principal) -> Outcome[TokenPair]:
        access_token = self._sign_access(principal)
        refresh_token = self.codec.sign(
            principal.email, self.settings.refresh_token_ttl_seconds
        )
        ttl = float(self.settings.refresh_token_ttl_seconds)
        refresh_claims = self.codec.verify(refresh_token)
        if isinstance(refresh_claims, ClaimSet):
            ttl = self.codec.remaining_seconds(refresh_claims)
        try:
            # Overwrites any earlier entry so older renewal tokens stop matching
            await self.store.set(renewal_key(principal.email), refresh_token, ttl)
        except StoreUnavailable:
            return Outcome.fail(TokenFailure.STORE_UNAVAILABLE)
        self.logger.info("tokens_issued", user_id=principal.user_id, role=principal.role)
        return Outcome.success(TokenPair(access_token=access_token, refresh_token=refresh_token))

    async def renew(self, refresh_token: str) -> Outcome[str]:
        claims = self.codec.verify(refresh_token)
        if isinstance(claims, VerificationFailure):
            self.logger.debug("renewal_token_rejected", reason=claims.value)
            return Outcome.fail(
                TokenFailure.INVALID_RENEWAL_TOKEN,
                cause=TokenFailure.from_verification(claims),
            )
        try:
            stored = await self.store.get(renewal_key(claims.subject))
        except StoreUnavailable:
            return Outcome.fail(TokenFailure.STORE_UNAVAILABLE)
        if stored is None or stored != refresh_token:
            self.logger.info("renewal_token_mismatch", registered=stored is not None)
            return Outcome.fail(TokenFailure.RENEWAL_MISMATCH)
        user = self.directory.get_user_by_email(claims.subject)
        if user is None:
            return Outcome.fail(TokenFailure.PRINCIPAL_NOT_FOUND)
        principal = Principal.from_user(user)
        self.logger.info("access_token_renewed", user_id=principal.user_id)
        return Outcome.success(self._sign_access(principal))

    async def revoke(self, access_token: str) -> Outcome[None]:
        claims = self.codec.verify(access_token)
        if isinstance(claims, VerificationFailure):
            return Outcome.fail(
                TokenFailure.INVALID_ACCESS_TOKEN,
                cause=TokenFailure.from_verification(claims),
            )
        remaining = self.codec.remaining_seconds(claims)
        try:
            await self.store.delete(renewal_key(claims.subject))
            if remaining > 0:
                await self.store.set(access_token, DENYLIST_VALUE, remaining)
        except StoreUnavailable:
            return Outcome.fail(TokenFailure.STORE_UNAVAILABLE)
        self.logger.info(
            "access_token_revoked",
            user_id=claims.user_id,
            denylisted=remaining > 0,
        )
        return Outcome.success(None)

    async def authenticate(self, access_token: str) -> Outcome[Principal]:
        claims = self.codec.verify(access_token)
        if isinstance(claims, VerificationFailure):
            return Outcome.fail(TokenFailure.from_verification(claims))
        if claims.role is None or claims.user_id is None:
            # Renewal tokens carry no role or user id and are not access tokens
            return Outcome.fail(TokenFailure.MALFORMED_TOKEN)
        try:
            revoked = await self.store.exists(access_token)
        except StoreUnavailable:
            return Outcome.fail(TokenFailure.STORE_UNAVAILABLE)
        if revoked:
            self.logger.info("access_token_denylisted", token=redact_value(access_token))
            return Outcome.fail(TokenFailure.REVOKED)
        return Outcome.success(
            Principal(user_id=claims.user_id, email=claims.subject, role=claims.role)
        )
