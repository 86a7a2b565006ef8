from __future__ import annotations

from typing import Any, List, Optional, Protocol, Set


class Batch(Protocol):
    """Queued commands sent to the backend in a single round trip.

    Command methods only queue; nothing reaches the backend until
    ``execute`` is awaited. Results come back in queue order.
    """

    def set(self, key: str, value: str, ex: Optional[int] = None) -> "Batch": ...

    def delete(self, *keys: str) -> "Batch": ...

    def sadd(self, key: str, *members: str) -> "Batch": ...

    def srem(self, key: str, *members: str) -> "Batch": ...

    def expire(self, key: str, seconds: int) -> "Batch": ...

    async def execute(self) -> List[Any]: ...


class KeyValueBackend(Protocol):
    """Shared key-value store backing sessions, counters, locks and tokens.

    Implementations guarantee atomicity of each single-key primitive
    (``incr``, ``sadd``/``srem``, ``expire``) and nothing more; callers
    never lock. Any transport or server failure is raised as
    :class:`trustgate.storage.errors.BackendUnavailable`.
    """

    async def get(self, key: str) -> Optional[str]: ...

    async def set(
        self, key: str, value: str, ex: Optional[int] = None, *, xx: bool = False
    ) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def srem(self, key: str, *members: str) -> int: ...

    async def smembers(self, key: str) -> Set[str]: ...

    async def scard(self, key: str) -> int: ...

    def pipeline(self) -> Batch: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


__all__ = ["Batch", "KeyValueBackend"]
