from __future__ import annotations

import contextlib
from typing import Any, Iterator, List, Optional, Set

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from trustgate.logging import get_logger
from trustgate.storage.errors import BackendUnavailable

logger = get_logger(__name__)


@contextlib.contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as exc:
        logger.error(
            "redis_command_failed",
            operation=operation,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise BackendUnavailable(
            f"redis {operation} failed: {exc}", operation=operation
        ) from exc


class RedisBackend:
    """Thin async Redis wrapper implementing :class:`KeyValueBackend`."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests.

        A short-lived synchronous client is used so the async client is not
        bound to a temporary event loop during startup checks.
        """
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            with _translate_errors("verify_connection"):
                sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        with _translate_errors("get"):
            return await self.client.get(key)

    async def set(
        self, key: str, value: str, ex: Optional[int] = None, *, xx: bool = False
    ) -> bool:
        with _translate_errors("set"):
            return bool(await self.client.set(key, value, ex=ex, xx=xx))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("delete"):
            return int(await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        with _translate_errors("exists"):
            return bool(await self.client.exists(key))

    async def incr(self, key: str) -> int:
        with _translate_errors("incr"):
            return int(await self.client.incr(key))

    async def expire(self, key: str, seconds: int) -> bool:
        with _translate_errors("expire"):
            return bool(await self.client.expire(key, seconds))

    async def ttl(self, key: str) -> int:
        with _translate_errors("ttl"):
            return int(await self.client.ttl(key))

    async def sadd(self, key: str, *members: str) -> int:
        with _translate_errors("sadd"):
            return int(await self.client.sadd(key, *members))

    async def srem(self, key: str, *members: str) -> int:
        with _translate_errors("srem"):
            return int(await self.client.srem(key, *members))

    async def smembers(self, key: str) -> Set[str]:
        with _translate_errors("smembers"):
            return set(await self.client.smembers(key))

    async def scard(self, key: str) -> int:
        with _translate_errors("scard"):
            return int(await self.client.scard(key))

    def pipeline(self) -> "_RedisBatch":
        return _RedisBatch(self.client.pipeline())

    async def ping(self) -> bool:
        with _translate_errors("ping"):
            return bool(await self.client.ping())

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down."""
        await self.client.aclose()


class _RedisBatch:
    """Collects commands on a redis pipeline; one round trip on execute."""

    def __init__(self, pipe: Any) -> None:
        self._pipe = pipe

    def set(self, key: str, value: str, ex: Optional[int] = None) -> "_RedisBatch":
        self._pipe.set(key, value, ex=ex)
        return self

    def delete(self, *keys: str) -> "_RedisBatch":
        self._pipe.delete(*keys)
        return self

    def sadd(self, key: str, *members: str) -> "_RedisBatch":
        self._pipe.sadd(key, *members)
        return self

    def srem(self, key: str, *members: str) -> "_RedisBatch":
        self._pipe.srem(key, *members)
        return self

    def expire(self, key: str, seconds: int) -> "_RedisBatch":
        self._pipe.expire(key, seconds)
        return self

    async def execute(self) -> List[Any]:
        with _translate_errors("pipeline"):
            return await self._pipe.execute()


__all__ = ["RedisBackend"]
