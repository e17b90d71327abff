from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from tokengate.config import get_settings, reset_settings_cache
from tokengate.logging import get_logger
from tokengate.service.auth import AuthService
from tokengate.service.codec import TokenCodec
from tokengate.service.tokens import TokenService
from tokengate.storage.errors import StoreUnavailable
from tokengate.storage.memory import MemoryCache, MemoryUserStore
from tokengate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.cache = self._build_cache()
        self.users = MemoryUserStore()
        self.codec = TokenCodec(self.settings.jwt_secret)
        self.tokens = TokenService(self.codec, self.cache, self.users, self.settings)
        self.auth = AuthService(self.users, self.tokens)

        logger.info(
            "runtime_initialized",
            store_type="memory" if isinstance(self.cache, MemoryCache) else "redis",
            access_token_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_token_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )

    def _build_cache(self) -> Union[RedisCache, MemoryCache]:
        if self.settings.use_memory_store:
            return MemoryCache()

        cache = RedisCache(
            self.settings.redis_url, socket_timeout=self.settings.redis_socket_timeout
        )
        try:
            cache.verify_connection()
            return cache
        except StoreUnavailable as exc:
            if not self.settings.test_mode:
                raise RuntimeError(
                    "Redis is required for the renewal registry and denylist; "
                    "start Redis or set USE_MEMORY_STORE=true for a local run."
                ) from exc
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(exc),
                message="Running without Redis under TEST_MODE; revocations are in-memory only.",
            )
            return MemoryCache()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.cache, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.cache.close())
            except RuntimeError:
                asyncio.run(runtime.cache.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
