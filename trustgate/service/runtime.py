from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse, urlunparse

from argon2 import PasswordHasher

from trustgate.config import Settings, get_settings
from trustgate.logging import get_logger
from trustgate.service.auth import AuthenticationFlow, UserDirectory
from trustgate.service.brute_force import LoginGuards
from trustgate.service.csrf import CsrfGuard
from trustgate.service.rate_limit import RateLimiter
from trustgate.service.sessions import SessionStore
from trustgate.storage.backend import KeyValueBackend
from trustgate.storage.keys import KeyBuilder
from trustgate.storage.memory import MemoryBackend, MemoryUserDirectory
from trustgate.storage.redis_backend import RedisBackend

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for logging.

    Example: redis://:secret@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Every service instance the HTTP app needs, built once per app.

    The app keeps its runtime on ``app.state``; nothing here is a module
    global, so tests can build as many isolated runtimes as they like.
    """

    def __init__(
        self,
        settings: Settings,
        backend: KeyValueBackend,
        users: UserDirectory,
        *,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.users = users
        keys = KeyBuilder(settings.key_namespace)
        self.sessions = SessionStore(
            backend,
            keys,
            session_ttl_seconds=settings.session_ttl_seconds,
            max_active_sessions=settings.max_active_sessions,
        )
        self.guards = LoginGuards.build(
            backend,
            keys,
            attempt_window_seconds=settings.attempt_window_seconds,
            max_attempts=settings.max_failed_attempts,
            lock_duration_seconds=settings.lock_duration_seconds,
        )
        self.csrf = CsrfGuard(backend, keys, ttl_seconds=settings.csrf_ttl_seconds)
        self.rate_limiter = RateLimiter(backend, settings.rate_limit_rules(), keys)
        self.auth = AuthenticationFlow(
            users, self.sessions, self.guards, self.csrf, hasher=hasher
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        backend: Optional[KeyValueBackend] = None,
        users: Optional[UserDirectory] = None,
    ) -> "Runtime":
        settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_backend=settings.use_memory_backend,
            test_mode=settings.test_mode,
        )
        if backend is None:
            if settings.use_memory_backend:
                backend = MemoryBackend()
            else:
                redis_backend = RedisBackend(
                    settings.redis_url, socket_timeout=settings.redis_socket_timeout
                )
                # Refuse to start without the store every gate depends on
                redis_backend.verify_connection()
                logger.info(
                    "redis_connected", redis_url=_mask_url_password(settings.redis_url)
                )
                backend = redis_backend
        runtime = cls(settings, backend, users or MemoryUserDirectory())
        logger.info("runtime_init_completed", backend=type(backend).__name__)
        return runtime

    async def close(self) -> None:
        await self.backend.close()
        logger.info("runtime_closed")


__all__ = ["Runtime"]
