from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class AuditStamp:
    """Creation and last-modification times, embedded by value in records."""

    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls, now: datetime | None = None) -> "AuditStamp":
        now = now or _utcnow()
        return cls(created_at=now, updated_at=now)

    def touched(self, now: datetime | None = None) -> "AuditStamp":
        return replace(self, updated_at=now or _utcnow())


@dataclass
class User:
    id: int
    email: str
    password_hash: str
    name: str
    role: UserRole = UserRole.USER
    audit: AuditStamp = field(default_factory=AuditStamp.new)
