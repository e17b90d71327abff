from __future__ import annotations

from typing import Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from tokengate.logging import get_logger
from tokengate.service.errors import (
    AuthenticationError,
    ConflictError,
    ServiceUnavailableError,
)
from tokengate.service.tokens import Outcome, Principal, TokenFailure, TokenPair, TokenService
from tokengate.storage.errors import ConstraintViolation
from tokengate.storage.models import User, UserRole

logger = get_logger(__name__)

INVALID_CREDENTIALS = "invalid credentials"


class UserStore(Protocol):
    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        *,
        role: UserRole = UserRole.USER,
    ) -> User: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user(self, user_id: int) -> Optional[User]: ...


class AuthService:
    """Password signup and login on top of the token lifecycle."""

    def __init__(self, store: UserStore, tokens: TokenService) -> None:
        self.store = store
        self.tokens = tokens
        self.logger = logger
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Verified against for unknown emails so both failure paths cost the same
        self._dummy_hash = self._pwd_hasher.hash("tokengate-dummy-password")

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, user: Optional[User], password: str) -> bool:
        stored_hash = user.password_hash if user else self._dummy_hash
        try:
            matched = self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerificationError):
            matched = False
        if not user:
            return False
        if not matched:
            self.logger.warning("password_verification_failed", user_id=user.id)
        return matched

    def signup(
        self,
        email: str,
        password: str,
        name: str,
        *,
        role: UserRole = UserRole.USER,
    ) -> User:
        try:
            return self.store.create_user(
                email, self._hash_password(password), name, role=role
            )
        except ConstraintViolation as exc:
            raise ConflictError(exc.message, detail=exc.detail) from exc

    async def login(self, email: str, password: str) -> TokenPair:
        user = self.store.get_user_by_email(email)
        if not self.verify_password(user, password):
            raise AuthenticationError(INVALID_CREDENTIALS)
        outcome = await self.tokens.issue(Principal.from_user(user))
        return unwrap(outcome)


def unwrap(outcome: Outcome):
    """Return an outcome's value or raise the matching HTTP-facing error."""
    if outcome.ok:
        return outcome.value
    if outcome.failure is TokenFailure.STORE_UNAVAILABLE:
        raise ServiceUnavailableError("token store unavailable, retry later")
    logger.debug("token_operation_rejected", reason=outcome.failure.value)
    raise AuthenticationError("invalid or expired token")
