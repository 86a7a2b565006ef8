from __future__ import annotations

from typing import Mapping, Optional

from trustgate.config import RateLimitRule
from trustgate.logging import get_logger
from trustgate.service.errors import RateLimitedError
from trustgate.storage.backend import KeyValueBackend
from trustgate.storage.keys import KeyBuilder, KeyKind

logger = get_logger(__name__)


class RateLimiter:
    """Fixed-window request counter per (route class, client IP).

    The window starts with the first request and its TTL is never
    extended, so the whole budget comes back at once when it lapses.
    Bursts straddling a window boundary can reach twice the limit.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        rules: Mapping[str, RateLimitRule],
        keys: Optional[KeyBuilder] = None,
    ) -> None:
        self.backend = backend
        self.rules = dict(rules)
        self._counters = (keys or KeyBuilder()).space(KeyKind.RATE_LIMIT)

    def rule_for(self, route_class: str) -> RateLimitRule:
        try:
            return self.rules[route_class]
        except KeyError:
            raise KeyError(f"no rate limit rule for route class {route_class!r}") from None

    async def allow(self, route_class: str, client_ip: str) -> bool:
        """Count the request; False once the route's budget is exhausted."""
        rule = self.rule_for(route_class)
        key = self._counters.key(route_class, client_ip or "unknown")
        requests = await self.backend.incr(key)
        if requests == 1:
            await self.backend.expire(key, rule.window_seconds)
        if requests > rule.max_requests:
            logger.warning(
                "rate_limit_exceeded",
                route_class=route_class,
                ip=client_ip,
                requests=requests,
                limit=rule.max_requests,
            )
            return False
        return True

    async def enforce(self, route_class: str, client_ip: str) -> None:
        """Raise :class:`RateLimitedError` when :meth:`allow` says no."""
        if not await self.allow(route_class, client_ip):
            raise RateLimitedError()


__all__ = ["RateLimiter"]
