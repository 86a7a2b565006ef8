from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class KeyKind(str, Enum):
    """Every entity kind stored in the backend, valued by its key prefix.

    No prefix may be a prefix of another, so a key built for one kind can
    never be matched by a pattern over a different kind.
    """

    SESSION = "session:"
    DEVICE_SESSION = "device_session:"
    USER_SESSIONS = "user:sessions:"
    FAILED_LOGIN_IP = "failed_login:ip:"
    FAILED_LOGIN_DEVICE = "failed_login:device:"
    FAILED_LOGIN_EMAIL = "failed_login:email:"
    LOCK_IP = "blocked_ip:"
    LOCK_DEVICE = "lock_device:"
    LOCK_EMAIL = "lock_email:"
    CSRF = "csrf:"
    RATE_LIMIT = "rate_limit:"


@dataclass(frozen=True)
class KeySpace:
    """Builds backend keys for exactly one entity kind."""

    kind: KeyKind
    namespace: str = ""

    @property
    def prefix(self) -> str:
        return f"{self.namespace}{self.kind.value}"

    def key(self, *parts: str) -> str:
        """Return ``<namespace><prefix><part>[:<part>...]``.

        Raises:
            ValueError: if no part is given or any part is empty
        """
        if not parts or any(not part for part in parts):
            raise ValueError(f"{self.kind.name} key requires non-empty identifiers")
        return self.prefix + ":".join(parts)


class KeyBuilder:
    """Hands out one :class:`KeySpace` per kind under a shared namespace."""

    def __init__(self, namespace: str = "") -> None:
        self.namespace = namespace

    def space(self, kind: KeyKind) -> KeySpace:
        return KeySpace(kind=kind, namespace=self.namespace)


__all__ = ["KeyBuilder", "KeyKind", "KeySpace"]
