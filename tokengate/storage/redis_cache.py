from __future__ import annotations

import contextlib
import math
from typing import Iterator, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from tokengate.logging import get_logger
from tokengate.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RedisCache:
    """Thin Redis wrapper for the renewal registry and the access-token denylist.

    Every command is bounded by the socket timeout; any Redis failure is
    raised as ``StoreUnavailable`` so callers never block indefinitely or see
    driver-specific exceptions.
    """

    DEFAULT_OPERATION_TIMEOUT = 2.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @staticmethod
    def _ttl_millis(ttl_seconds: float) -> int:
        """Convert a TTL to whole milliseconds, rounding up.

        Rounding up keeps a denylist entry alive until the token itself has
        expired; Redis rejects zero or negative expirations.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        return max(1, math.ceil(ttl_seconds * 1000))

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.warning(
                "revocation_store_unavailable",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailable(operation) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            with self._translate_errors("ping"):
                sync_client.ping()
        finally:
            sync_client.close()

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        px = self._ttl_millis(ttl_seconds)
        with self._translate_errors("set"):
            await self.client.set(key, value, px=px)

    async def get(self, key: str) -> Optional[str]:
        with self._translate_errors("get"):
            return await self.client.get(key)

    async def exists(self, key: str) -> bool:
        with self._translate_errors("exists"):
            return bool(await self.client.exists(key))

    async def delete(self, key: str) -> None:
        with self._translate_errors("delete"):
            await self.client.delete(key)

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when absent."""
        with self._translate_errors("pttl"):
            remaining_ms = await self.client.pttl(key)
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
