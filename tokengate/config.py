from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokengate.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than the digest size weaken the MAC
MIN_SECRET_BYTES = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


class Settings(BaseModel):
    """Process-wide settings, read once at startup and immutable afterwards."""

    jwt_secret: str = env_field(None, "JWT_SECRET")
    access_token_ttl_seconds: int = env_field(
        30 * 60,
        "ACCESS_TOKEN_TTL_SECONDS",
        description="Lifetime of access tokens in seconds",
    )
    refresh_token_ttl_seconds: int = env_field(
        14 * 24 * 60 * 60,
        "REFRESH_TOKEN_TTL_SECONDS",
        description="Lifetime of renewal tokens in seconds",
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(
        2.0,
        "REDIS_SOCKET_TIMEOUT",
        description="Upper bound for a single store round-trip in seconds",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow in-memory fallbacks and an ephemeral signing key",
    )
    allow_ephemeral_secret: bool = env_field(False, "ALLOW_EPHEMERAL_SECRET")

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @model_validator(mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("jwt_secret"):
            return data
        if not (_truthy(data.get("test_mode")) or _truthy(data.get("allow_ephemeral_secret"))):
            raise ValueError(
                "JWT_SECRET is required; set TEST_MODE=true or ALLOW_EPHEMERAL_SECRET=true "
                "to sign with a per-process key"
            )
        logger.warning(
            "jwt_secret_ephemeral",
            message="Signing with a random per-process key; tokens will not survive a restart",
        )
        return {**data, "jwt_secret": secrets.token_urlsafe(64)}

    @field_validator("jwt_secret")
    @classmethod
    def _check_secret_length(cls, value: str) -> str:
        if len(value.encode()) < MIN_SECRET_BYTES:
            raise ValueError(f"JWT_SECRET must be at least {MIN_SECRET_BYTES} bytes")
        return value

    @field_validator("redis_socket_timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REDIS_SOCKET_TIMEOUT must be positive")
        return value

    @model_validator(mode="after")
    def _check_ttl_order(self) -> "Settings":
        if self.access_token_ttl_seconds <= 0:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be positive")
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            raise ValueError(
                "REFRESH_TOKEN_TTL_SECONDS must be longer than ACCESS_TOKEN_TTL_SECONDS"
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
