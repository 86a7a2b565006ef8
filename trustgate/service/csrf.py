from __future__ import annotations

import hmac
import secrets
from typing import Optional

from trustgate.logging import get_logger
from trustgate.storage.backend import KeyValueBackend
from trustgate.storage.errors import BackendUnavailable
from trustgate.storage.keys import KeyBuilder, KeyKind

logger = get_logger(__name__)

DEFAULT_CSRF_TTL_SECONDS = 30 * 60


class CsrfGuard:
    """Per-session anti-forgery tokens, single use on state-changing requests."""

    def __init__(
        self,
        backend: KeyValueBackend,
        keys: Optional[KeyBuilder] = None,
        *,
        ttl_seconds: int = DEFAULT_CSRF_TTL_SECONDS,
    ) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self._tokens = (keys or KeyBuilder()).space(KeyKind.CSRF)

    async def generate_token(self, session_id: str) -> str:
        token = secrets.token_hex(32)
        await self.backend.set(self._tokens.key(session_id), token, ex=self.ttl_seconds)
        logger.info("csrf_token_generated", session_id=session_id)
        return token

    async def validate_token(self, session_id: str, candidate: Optional[str]) -> bool:
        """Constant-time check against the last issued token.

        Fails closed: a missing token, an empty candidate or a backend error
        all count as invalid.
        """
        if not session_id or not candidate:
            return False
        try:
            stored = await self.backend.get(self._tokens.key(session_id))
        except BackendUnavailable as exc:
            logger.error("csrf_validation_failed", session_id=session_id, error=exc.message)
            return False
        if not stored:
            logger.warning("csrf_token_missing_or_expired", session_id=session_id)
            return False
        valid = hmac.compare_digest(stored.encode(), candidate.encode())
        if valid:
            logger.info("csrf_token_validated", session_id=session_id)
        else:
            logger.warning("csrf_token_mismatch", session_id=session_id)
        return valid

    async def refresh_token(self, session_id: str) -> str:
        """Rotate: drop the current token and issue a new one."""
        await self.backend.delete(self._tokens.key(session_id))
        token = await self.generate_token(session_id)
        logger.info("csrf_token_refreshed", session_id=session_id)
        return token

    async def delete_token(self, session_id: str) -> bool:
        await self.backend.delete(self._tokens.key(session_id))
        logger.info("csrf_token_deleted", session_id=session_id)
        return True


__all__ = ["CsrfGuard"]
