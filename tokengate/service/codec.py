"""Compact HS256 token encoding and verification.

Tokens are three base64url segments (header, claims, signature) joined by
``.``. The signature is HMAC-SHA256 over ``header + "." + claims`` using the
server-held key. Verification never decodes claims before the signature has
been checked in constant time.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from tokengate.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
_HEADER = {"alg": ALGORITHM, "typ": "JWT"}


class VerificationFailure(str, Enum):
    """Why a token string was rejected by the codec."""

    MALFORMED_TOKEN = "malformed_token"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ClaimSet:
    subject: str
    issued_at: int
    expires_at: int
    role: Optional[str] = None
    user_id: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"sub": self.subject}
        if self.role is not None:
            payload["role"] = self.role
        if self.user_id is not None:
            payload["userId"] = self.user_id
        payload["iat"] = self.issued_at
        payload["exp"] = self.expires_at
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["ClaimSet"]:
        """Build a claim set from decoded JSON, or None if a claim is missing or mistyped."""
        if not isinstance(payload, dict):
            return None
        subject = payload.get("sub")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        role = payload.get("role")
        user_id = payload.get("userId")
        if not isinstance(subject, str) or not subject:
            return None
        if not _is_int(issued_at) or not _is_int(expires_at):
            return None
        if role is not None and not isinstance(role, str):
            return None
        if user_id is not None and not _is_int(user_id):
            return None
        return cls(
            subject=subject,
            issued_at=issued_at,
            expires_at=expires_at,
            role=role,
            user_id=user_id,
        )


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid timestamp or id
    return isinstance(value, int) and not isinstance(value, bool)


VerifyResult = Union[ClaimSet, VerificationFailure]


class TokenCodec:
    """Sign claim sets into tokens and verify tokens back into claim sets."""

    def __init__(self, secret: str | bytes, *, clock: Callable[[], float] = time.time) -> None:
        self._key = secret.encode() if isinstance(secret, str) else secret
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode((segment + padding).encode("ascii"))

    def _signature(self, signing_input: str) -> bytes:
        return hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()

    def sign(
        self,
        subject: str,
        ttl_seconds: int,
        *,
        role: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = int(self._clock())
        claims = ClaimSet(
            subject=subject,
            issued_at=issued_at,
            expires_at=issued_at + int(ttl_seconds),
            role=role,
            user_id=user_id,
        )
        return self.encode(claims)

    def encode(self, claims: ClaimSet) -> str:
        """Serialize and sign an already-timestamped claim set."""
        header_enc = self._encode_segment(
            json.dumps(_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(claims.to_payload(), separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._encode_segment(self._signature(signing_input))}"

    def verify(self, token: str) -> VerifyResult:
        if not isinstance(token, str):
            return VerificationFailure.MALFORMED_TOKEN
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            return VerificationFailure.MALFORMED_TOKEN
        header_b64, payload_b64, sig_b64 = parts

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (binascii.Error, ValueError, RecursionError):
            logger.debug("token_segment_decode_failed")
            return VerificationFailure.MALFORMED_TOKEN
        if not isinstance(header, dict):
            return VerificationFailure.MALFORMED_TOKEN
        # Reject "none" and every other algorithm to prevent algorithm confusion
        if header.get("alg") != ALGORITHM:
            logger.debug("token_algorithm_rejected", alg=str(header.get("alg")))
            return VerificationFailure.BAD_SIGNATURE

        # Compare encoded segments so non-canonical base64 cannot alias a valid signature
        expected = self._encode_segment(self._signature(f"{header_b64}.{payload_b64}"))
        if not hmac.compare_digest(expected.encode(), sig_b64.encode()):
            return VerificationFailure.BAD_SIGNATURE

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (binascii.Error, ValueError, RecursionError):
            logger.debug("token_payload_decode_failed")
            return VerificationFailure.MALFORMED_TOKEN
        claims = ClaimSet.from_payload(payload)
        if claims is None:
            return VerificationFailure.MALFORMED_TOKEN
        if claims.expires_at <= self._clock():
            return VerificationFailure.EXPIRED
        return claims

    def remaining_seconds(self, claims: ClaimSet) -> float:
        return claims.expires_at - self._clock()
