from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from trustgate.storage.errors import BackendUnavailable
from trustgate.storage.models import User, UserCredential

_Value = Union[str, Set[str]]


@dataclass
class _Entry:
    value: _Value
    expires_at: Optional[float] = None


class MemoryBackend:
    """In-process key-value backend with the same contract as Redis.

    Each command runs under one lock, which gives the single-key atomicity
    the services rely on. Expired keys are dropped lazily on access. The
    clock is injectable so callers can move time forward deterministically.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.RLock()
        self._failure: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # outage simulation
    # ------------------------------------------------------------------

    def fail_with(self, exc: Optional[BaseException] = None) -> None:
        """Make every subsequent command raise ``BackendUnavailable``."""
        self._failure = exc or ConnectionError("memory backend offline")

    def recover(self) -> None:
        self._failure = None

    def _check_available(self, operation: str) -> None:
        if self._failure is not None:
            raise BackendUnavailable(
                f"backend unavailable during {operation}", operation=operation
            ) from self._failure

    # ------------------------------------------------------------------
    # internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _string(self, key: str, operation: str) -> Optional[_Entry]:
        entry = self._live(key)
        if entry is not None and not isinstance(entry.value, str):
            raise BackendUnavailable(
                "WRONGTYPE operation against a key holding a set",
                operation=operation,
                detail={"key": key},
            )
        return entry

    def _set_entry(self, key: str, operation: str) -> Optional[_Entry]:
        entry = self._live(key)
        if entry is not None and not isinstance(entry.value, set):
            raise BackendUnavailable(
                "WRONGTYPE operation against a key holding a string",
                operation=operation,
                detail={"key": key},
            )
        return entry

    def _do_set(
        self, key: str, value: str, ex: Optional[int] = None, xx: bool = False
    ) -> bool:
        if xx and self._live(key) is None:
            return False
        expires_at = self._clock() + ex if ex else None
        self._entries[key] = _Entry(value=str(value), expires_at=expires_at)
        return True

    def _do_delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._entries[key]
                removed += 1
        return removed

    def _do_expire(self, key: str, seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        if seconds <= 0:
            del self._entries[key]
            return True
        entry.expires_at = self._clock() + seconds
        return True

    def _do_sadd(self, key: str, *members: str) -> int:
        entry = self._set_entry(key, "sadd")
        if entry is None:
            entry = _Entry(value=set())
            self._entries[key] = entry
        before = len(entry.value)
        entry.value.update(members)  # type: ignore[union-attr]
        return len(entry.value) - before

    def _do_srem(self, key: str, *members: str) -> int:
        entry = self._set_entry(key, "srem")
        if entry is None:
            return 0
        before = len(entry.value)
        entry.value.difference_update(members)  # type: ignore[union-attr]
        removed = before - len(entry.value)
        if not entry.value:
            # Redis drops empty sets
            del self._entries[key]
        return removed

    def _run(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            self._check_available(operation)
            return getattr(self, f"_do_{operation}")(*args, **kwargs)

    # ------------------------------------------------------------------
    # KeyValueBackend
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._check_available("get")
            entry = self._string(key, "get")
            return entry.value if entry is not None else None  # type: ignore[return-value]

    async def set(
        self, key: str, value: str, ex: Optional[int] = None, *, xx: bool = False
    ) -> bool:
        return self._run("set", key, value, ex, xx)

    async def delete(self, *keys: str) -> int:
        return self._run("delete", *keys)

    async def exists(self, key: str) -> bool:
        with self._lock:
            self._check_available("exists")
            return self._live(key) is not None

    async def incr(self, key: str) -> int:
        with self._lock:
            self._check_available("incr")
            entry = self._string(key, "incr")
            if entry is None:
                self._entries[key] = _Entry(value="1")
                return 1
            try:
                current = int(entry.value)  # type: ignore[arg-type]
            except ValueError as exc:
                raise BackendUnavailable(
                    "value is not an integer", operation="incr", detail={"key": key}
                ) from exc
            # INCR keeps the existing expiry
            entry.value = str(current + 1)
            return current + 1

    async def expire(self, key: str, seconds: int) -> bool:
        return self._run("expire", key, seconds)

    async def ttl(self, key: str) -> int:
        with self._lock:
            self._check_available("ttl")
            entry = self._live(key)
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            return max(0, math.ceil(entry.expires_at - self._clock()))

    async def sadd(self, key: str, *members: str) -> int:
        return self._run("sadd", key, *members)

    async def srem(self, key: str, *members: str) -> int:
        return self._run("srem", key, *members)

    async def smembers(self, key: str) -> Set[str]:
        with self._lock:
            self._check_available("smembers")
            entry = self._set_entry(key, "smembers")
            return set(entry.value) if entry is not None else set()  # type: ignore[arg-type]

    async def scard(self, key: str) -> int:
        with self._lock:
            self._check_available("scard")
            entry = self._set_entry(key, "scard")
            return len(entry.value) if entry is not None else 0

    def pipeline(self) -> "_MemoryBatch":
        return _MemoryBatch(self)

    async def ping(self) -> bool:
        with self._lock:
            self._check_available("ping")
        return True

    async def close(self) -> None:
        return None

    def keys(self) -> List[str]:
        """Live keys, for inspection in tests and debugging."""
        with self._lock:
            return [key for key in list(self._entries) if self._live(key) is not None]


class _MemoryBatch:
    """Queues commands and applies them under a single lock acquisition."""

    def __init__(self, backend: MemoryBackend) -> None:
        self._backend = backend
        self._commands: List[Tuple[str, tuple, dict]] = []

    def _queue(self, operation: str, *args: Any, **kwargs: Any) -> "_MemoryBatch":
        self._commands.append((operation, args, kwargs))
        return self

    def set(self, key: str, value: str, ex: Optional[int] = None) -> "_MemoryBatch":
        return self._queue("set", key, value, ex)

    def delete(self, *keys: str) -> "_MemoryBatch":
        return self._queue("delete", *keys)

    def sadd(self, key: str, *members: str) -> "_MemoryBatch":
        return self._queue("sadd", key, *members)

    def srem(self, key: str, *members: str) -> "_MemoryBatch":
        return self._queue("srem", key, *members)

    def expire(self, key: str, seconds: int) -> "_MemoryBatch":
        return self._queue("expire", key, seconds)

    async def execute(self) -> List[Any]:
        backend = self._backend
        commands, self._commands = self._commands, []
        with backend._lock:
            backend._check_available("pipeline")
            return [
                getattr(backend, f"_do_{operation}")(*args, **kwargs)
                for operation, args, kwargs in commands
            ]


class MemoryUserDirectory:
    """In-memory user directory for tests and local development."""

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, UserCredential] = {}
        self._data_lock = threading.RLock()

    async def get_user_by_email(self, email: str) -> Optional[Tuple[User, str]]:
        normalized = email.strip().lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email == normalized:
                    credential = self.credentials.get(user.id)
                    return user, credential.password_hash if credential else ""
        return None

    async def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: str,
        last_name: str,
    ) -> User:
        user = User.new(email.strip().lower(), first_name, last_name)
        with self._data_lock:
            self.users[user.id] = user
            self.credentials[user.id] = UserCredential(
                user_id=user.id, password_hash=password_hash
            )
        return user


__all__ = ["MemoryBackend", "MemoryUserDirectory"]
