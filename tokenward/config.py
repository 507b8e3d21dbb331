from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokenward.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/tokenward", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    db_pool_min_size: int = env_field(
        2, "DB_POOL_MIN", description="Connections kept open by the store pool"
    )
    db_pool_max_size: int = env_field(
        10, "DB_POOL_MAX", description="Upper bound on concurrent store connections"
    )
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("tokenward", "JWT_ISSUER")
    jwt_audience: str = env_field("tokenward-clients", "JWT_AUDIENCE")
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        description="Clock skew tolerated when checking token expiry",
    )
    access_token_ttl_minutes: int = env_field(
        30,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Access token TTL in minutes",
    )
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Refresh token TTL in minutes; also the session row expiry",
    )
    argon2_time_cost: int = env_field(3, "ARGON2_TIME_COST")
    argon2_memory_cost: int = env_field(64 * 1024, "ARGON2_MEMORY_COST")
    argon2_parallelism: int = env_field(4, "ARGON2_PARALLELISM")

    model_config = ConfigDict(extra="ignore")

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

    @field_validator(
        "db_pool_min_size",
        "db_pool_max_size",
        "access_token_ttl_minutes",
        "refresh_token_ttl_minutes",
        "argon2_time_cost",
        "argon2_memory_cost",
        "argon2_parallelism",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("jwt_leeway_seconds")
    @classmethod
    def _require_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET is unset; using a per-process secret",
        )
        return secrets.token_urlsafe(64)

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "Settings":
        if self.db_pool_max_size < self.db_pool_min_size:
            raise ValueError("db_pool_max_size must be >= db_pool_min_size")
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
