from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RateLimitTier(str, Enum):
    """Named rate limit budgets shared by several route classes."""

    STRICT = "strict"
    LOOSE = "loose"


@dataclass(frozen=True)
class RateLimitRule:
    """Fixed-window budget: at most ``max_requests`` per ``window_ms``."""

    window_ms: int
    max_requests: int

    @property
    def window_seconds(self) -> int:
        # Redis EXPIRE rejects zero; sub-second windows round up to one second
        return max(1, self.window_ms // 1000)


# Route classes served under /api/auth mapped to the budget they draw from.
# Credential routes share the strict tier, everything else the loose one.
ROUTE_CLASS_TIERS: dict[str, RateLimitTier] = {
    "register": RateLimitTier.STRICT,
    "login": RateLimitTier.STRICT,
    "logout": RateLimitTier.LOOSE,
    "me": RateLimitTier.LOOSE,
    "csrf-token": RateLimitTier.LOOSE,
    "sessions": RateLimitTier.LOOSE,
}


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the trust layer."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    use_memory_backend: bool = env_field(
        False,
        "USE_MEMORY_BACKEND",
        description="Keep sessions, counters and tokens in process memory instead of Redis",
    )
    test_mode: bool = env_field(False, "TEST_MODE")
    key_namespace: str = env_field(
        "",
        "KEY_NAMESPACE",
        description="Prefix prepended to every backend key (e.g. 'prod:')",
    )

    # Sessions
    session_ttl_seconds: int = env_field(7 * 24 * 60 * 60, "SESSION_TTL_SECONDS")
    max_active_sessions: int = env_field(5, "MAX_ACTIVE_SESSIONS")

    # Failed login tracking
    attempt_window_seconds: int = env_field(60 * 60, "ATTEMPT_WINDOW_SECONDS")
    max_failed_attempts: int = env_field(5, "MAX_FAILED_ATTEMPTS")
    lock_duration_seconds: int = env_field(30 * 60, "LOCK_DURATION_SECONDS")

    # Anti-forgery tokens
    csrf_ttl_seconds: int = env_field(30 * 60, "CSRF_TTL_SECONDS")

    # Rate limits
    strict_rate_limit_window_ms: int = env_field(15 * 60 * 1000, "RATE_LIMIT_WINDOW_MS")
    strict_rate_limit_max_requests: int = env_field(6, "RATE_LIMIT_MAX_REQUESTS")
    loose_rate_limit_window_ms: int = env_field(60 * 1000, "LOOSE_RATE_LIMIT_WINDOW_MS")
    loose_rate_limit_max_requests: int = env_field(20, "LOOSE_RATE_LIMIT_MAX_REQUESTS")

    # Session cookie
    session_cookie_name: str = env_field("access_token", "SESSION_COOKIE_NAME")
    session_cookie_max_age_seconds: int = env_field(
        3 * 60 * 60, "SESSION_COOKIE_MAX_AGE_SECONDS"
    )
    session_cookie_secure: bool = env_field(True, "SESSION_COOKIE_SECURE")
    session_cookie_samesite: str = env_field("strict", "SESSION_COOKIE_SAMESITE")
    cors_allow_origins: list[str] = env_field(
        ["http://localhost:3000"], "CORS_ALLOW_ORIGINS"
    )

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
        "session_ttl_seconds",
        "max_active_sessions",
        "attempt_window_seconds",
        "max_failed_attempts",
        "lock_duration_seconds",
        "csrf_ttl_seconds",
        "strict_rate_limit_window_ms",
        "strict_rate_limit_max_requests",
        "loose_rate_limit_window_ms",
        "loose_rate_limit_max_requests",
    )
    @classmethod
    def _require_positive(cls, value: int, info) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @field_validator("session_cookie_samesite")
    @classmethod
    def _validate_samesite(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"strict", "lax", "none"}:
            raise ValueError("session_cookie_samesite must be strict, lax or none")
        return normalized

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    def rate_limit_rules(self) -> dict[str, RateLimitRule]:
        """Resolve every known route class to its fixed-window rule."""
        tiers = {
            RateLimitTier.STRICT: RateLimitRule(
                self.strict_rate_limit_window_ms, self.strict_rate_limit_max_requests
            ),
            RateLimitTier.LOOSE: RateLimitRule(
                self.loose_rate_limit_window_ms, self.loose_rate_limit_max_requests
            ),
        }
        return {route: tiers[tier] for route, tier in ROUTE_CLASS_TIERS.items()}


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
