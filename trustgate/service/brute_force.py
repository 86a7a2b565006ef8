from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from trustgate.logging import get_logger
from trustgate.storage.backend import KeyValueBackend
from trustgate.storage.errors import BackendUnavailable
from trustgate.storage.keys import KeyBuilder, KeyKind

logger = get_logger(__name__)

DEFAULT_ATTEMPT_WINDOW_SECONDS = 60 * 60
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LOCK_DURATION_SECONDS = 30 * 60


class IdentifierSpace(str, Enum):
    """What a failed-attempt counter is keyed on."""

    IP = "ip"
    DEVICE = "device"
    EMAIL = "email"

    @property
    def counter_kind(self) -> KeyKind:
        return _COUNTER_KINDS[self]

    @property
    def lock_kind(self) -> KeyKind:
        return _LOCK_KINDS[self]

    def normalize(self, identifier: str) -> str:
        if self is IdentifierSpace.EMAIL:
            return identifier.strip().lower()
        return identifier


_COUNTER_KINDS = {
    IdentifierSpace.IP: KeyKind.FAILED_LOGIN_IP,
    IdentifierSpace.DEVICE: KeyKind.FAILED_LOGIN_DEVICE,
    IdentifierSpace.EMAIL: KeyKind.FAILED_LOGIN_EMAIL,
}
_LOCK_KINDS = {
    IdentifierSpace.IP: KeyKind.LOCK_IP,
    IdentifierSpace.DEVICE: KeyKind.LOCK_DEVICE,
    IdentifierSpace.EMAIL: KeyKind.LOCK_EMAIL,
}


class BruteForceGuard:
    """Failed-attempt counter with lockout for one identifier space.

    A lock is written once the counter *exceeds* ``max_attempts``: with the
    default of 5, the sixth failure inside the window locks.
    """

    def __init__(
        self,
        space: IdentifierSpace,
        backend: KeyValueBackend,
        keys: Optional[KeyBuilder] = None,
        *,
        attempt_window_seconds: int = DEFAULT_ATTEMPT_WINDOW_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lock_duration_seconds: int = DEFAULT_LOCK_DURATION_SECONDS,
    ) -> None:
        keys = keys or KeyBuilder()
        self.space = space
        self.backend = backend
        self.attempt_window_seconds = attempt_window_seconds
        self.max_attempts = max_attempts
        self.lock_duration_seconds = lock_duration_seconds
        self._counters = keys.space(space.counter_kind)
        self._locks = keys.space(space.lock_kind)

    async def record_failed_attempt(self, identifier: str) -> int:
        """Count one failure and lock the identifier past the threshold.

        Returns:
            The attempt count within the current window
        """
        identifier = self.space.normalize(identifier)
        counter_key = self._counters.key(identifier)
        attempts = await self.backend.incr(counter_key)
        if attempts == 1:
            await self.backend.expire(counter_key, self.attempt_window_seconds)
        if attempts > self.max_attempts:
            await self.backend.set(
                self._locks.key(identifier), "1", ex=self.lock_duration_seconds
            )
            logger.warning(
                "identifier_locked",
                space=self.space.value,
                identifier=identifier,
                attempts=attempts,
                lock_seconds=self.lock_duration_seconds,
            )
        return attempts

    async def is_blocked(self, identifier: str, *, fail_open: bool = False) -> bool:
        """True iff a lock record exists for the identifier.

        With ``fail_open`` a backend failure is logged and the identifier is
        reported as not blocked; otherwise ``BackendUnavailable`` propagates.
        """
        identifier = self.space.normalize(identifier)
        try:
            return await self.backend.exists(self._locks.key(identifier))
        except BackendUnavailable as exc:
            if not fail_open:
                raise
            logger.error(
                "blocklist_check_failed_open",
                space=self.space.value,
                identifier=identifier,
                error=exc.message,
            )
            return False

    async def lock(self, identifier: str) -> None:
        """Lock unconditionally, bypassing the counter (honeypot trips)."""
        identifier = self.space.normalize(identifier)
        await self.backend.set(
            self._locks.key(identifier), "1", ex=self.lock_duration_seconds
        )
        logger.warning("identifier_locked_manually", space=self.space.value, identifier=identifier)

    async def clear_attempts(self, identifier: str) -> None:
        identifier = self.space.normalize(identifier)
        await self.backend.delete(
            self._locks.key(identifier), self._counters.key(identifier)
        )

    async def remaining_attempts(self, identifier: str) -> int:
        """Failures still allowed before the next one locks."""
        identifier = self.space.normalize(identifier)
        raw = await self.backend.get(self._counters.key(identifier))
        attempts = int(raw) if raw else 0
        return max(0, self.max_attempts - attempts)


@dataclass
class LoginGuards:
    """The three guards consulted around every credential check."""

    ip: BruteForceGuard
    device: BruteForceGuard
    email: BruteForceGuard

    @classmethod
    def build(
        cls,
        backend: KeyValueBackend,
        keys: Optional[KeyBuilder] = None,
        *,
        attempt_window_seconds: int = DEFAULT_ATTEMPT_WINDOW_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lock_duration_seconds: int = DEFAULT_LOCK_DURATION_SECONDS,
    ) -> "LoginGuards":
        def make(space: IdentifierSpace) -> BruteForceGuard:
            return BruteForceGuard(
                space,
                backend,
                keys,
                attempt_window_seconds=attempt_window_seconds,
                max_attempts=max_attempts,
                lock_duration_seconds=lock_duration_seconds,
            )

        return cls(
            ip=make(IdentifierSpace.IP),
            device=make(IdentifierSpace.DEVICE),
            email=make(IdentifierSpace.EMAIL),
        )

    def for_space(self, space: IdentifierSpace) -> BruteForceGuard:
        return getattr(self, space.value)


__all__ = ["BruteForceGuard", "IdentifierSpace", "LoginGuards"]
