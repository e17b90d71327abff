from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from tokengate.logging import get_logger
from tokengate.storage.errors import ConstraintViolation
from tokengate.storage.models import AuditStamp, User, UserRole


class MemoryCache:
    """In-process TTL key/value store with the same contract as RedisCache.

    Expired entries read as absent and are evicted lazily on access or during
    ``purge_expired``. The clock is injectable so tests can move time.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def _live_value_locked(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live_value_locked(key)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_value_locked(key) is not None

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when absent."""
        with self._lock:
            if self._live_value_locked(key) is None:
                return None
            return self._entries[key][1] - self._clock()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.debug("memory_cache_purged", purged=len(expired))
        return len(expired)


class MemoryUserStore:
    """Principal directory kept in process memory.

    Stands in for the user database in local runs and tests; users do not
    survive a restart.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self._id_seq = 1
        self._data_lock = threading.RLock()

    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        *,
        role: UserRole = UserRole.USER,
    ) -> User:
        with self._data_lock:
            if self.get_user_by_email(email) is not None:
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=self._id_seq,
                email=email,
                password_hash=password_hash,
                name=name,
                role=role,
                audit=AuditStamp.new(),
            )
            self._id_seq += 1
            self.users[user.id] = user
        self.logger.info("user_created", user_id=user.id, role=user.role.value)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def update_user_role(self, user_id: int, role: UserRole) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            user.audit = user.audit.touched()
            return user
