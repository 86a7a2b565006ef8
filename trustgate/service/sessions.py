from __future__ import annotations

import json
import uuid
from typing import Optional

from trustgate.logging import get_logger
from trustgate.service.errors import SessionLimitExceeded
from trustgate.storage.backend import KeyValueBackend
from trustgate.storage.errors import BackendUnavailable
from trustgate.storage.keys import KeyBuilder, KeyKind
from trustgate.storage.models import SessionRecord, User, utcnow

logger = get_logger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_MAX_ACTIVE_SESSIONS = 5


def _salvage_user_id(raw: str) -> Optional[str]:
    """Best-effort user id from a record that failed to parse."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get("user_id"), str):
        return payload["user_id"] or None
    return None


class SessionStore:
    """Opaque server-side sessions with a per-user cap and one session per device.

    Three kinds of keys are maintained:

    - ``session:<id>``: the JSON record, sliding TTL
    - ``user:sessions:<user_id>``: set of the user's session ids, no TTL
    - ``device_session:<user_id>:<user_agent>``: id of the device's session

    The create sequence (cap check, then writes) is not transactional, so
    concurrent logins for one user may briefly exceed the cap. Ids whose
    records expired passively stay in the user's set until a destroy
    touches them.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        keys: Optional[KeyBuilder] = None,
        *,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        max_active_sessions: int = DEFAULT_MAX_ACTIVE_SESSIONS,
    ) -> None:
        keys = keys or KeyBuilder()
        self.backend = backend
        self.session_ttl_seconds = session_ttl_seconds
        self.max_active_sessions = max_active_sessions
        self._sessions = keys.space(KeyKind.SESSION)
        self._user_sessions = keys.space(KeyKind.USER_SESSIONS)
        self._device_sessions = keys.space(KeyKind.DEVICE_SESSION)

    async def create_session(self, user: User, ip: str, user_agent: str) -> str:
        """Create a session and return its id.

        The caller must destroy the device's previous session first (see
        :meth:`get_device_session`); this method does not dedupe by device.

        Raises:
            SessionLimitExceeded: the user already holds ``max_active_sessions``
            BackendUnavailable: the backend could not be reached
        """
        logger.info("session_create_started", user_id=user.id, ip=ip)
        set_key = self._user_sessions.key(user.id)
        active = await self.backend.scard(set_key)
        if active >= self.max_active_sessions:
            logger.warning(
                "session_limit_reached",
                user_id=user.id,
                active_sessions=active,
                max_active_sessions=self.max_active_sessions,
            )
            raise SessionLimitExceeded(
                detail={"max_active_sessions": self.max_active_sessions}
            )

        session_id = str(uuid.uuid4())
        record = SessionRecord.for_user(session_id, user, ip, user_agent)
        pipe = self.backend.pipeline()
        pipe.set(
            self._sessions.key(session_id), record.to_json(), ex=self.session_ttl_seconds
        )
        pipe.set(
            self._device_sessions.key(user.id, user_agent),
            session_id,
            ex=self.session_ttl_seconds,
        )
        pipe.sadd(set_key, session_id)
        await pipe.execute()
        logger.info(
            "session_created",
            user_id=user.id,
            session_id=session_id,
            active_sessions=active + 1,
        )
        return session_id

    async def validate_session(self, session_id: Optional[str]) -> Optional[SessionRecord]:
        """Return the live record and extend its life, or None.

        Fails closed: a backend error is logged and reported as no session.
        """
        if not session_id:
            return None
        key = self._sessions.key(session_id)
        try:
            raw = await self.backend.get(key)
            if raw is None:
                logger.info("session_not_found", session_id=session_id)
                return None
            try:
                record = SessionRecord.from_json(raw)
            except ValueError as exc:
                logger.warning("session_record_corrupt", session_id=session_id, error=str(exc))
                return None
            record.last_activity = max(record.last_activity, utcnow())
            # xx: a session destroyed since the read must stay destroyed
            refreshed = await self.backend.set(
                key, record.to_json(), ex=self.session_ttl_seconds, xx=True
            )
            if not refreshed:
                logger.info("session_destroyed_during_validation", session_id=session_id)
                return None
            # The device pointer must live as long as the session it names
            device_key = self._device_sessions.key(record.user_id, record.user_agent)
            if await self.backend.get(device_key) == session_id:
                await self.backend.expire(device_key, self.session_ttl_seconds)
        except BackendUnavailable as exc:
            logger.error(
                "session_validation_failed",
                session_id=session_id,
                error=exc.message,
            )
            return None
        return record

    async def destroy_session(self, session_id: str) -> bool:
        """Delete one session and its index entries. False if it was already gone."""
        key = self._sessions.key(session_id)
        raw = await self.backend.get(key)
        if raw is None:
            return False
        try:
            record: Optional[SessionRecord] = SessionRecord.from_json(raw)
            user_id = record.user_id
        except ValueError:
            record = None
            user_id = _salvage_user_id(raw)

        pipe = self.backend.pipeline()
        pipe.delete(key)
        if user_id:
            pipe.srem(self._user_sessions.key(user_id), session_id)
        else:
            logger.warning("session_set_entry_orphaned", session_id=session_id)
        if record is not None:
            device_key = self._device_sessions.key(record.user_id, record.user_agent)
            # Only clear the pointer if the device has not moved on to a newer session
            if await self.backend.get(device_key) == session_id:
                pipe.delete(device_key)
        await pipe.execute()
        logger.info("session_destroyed", session_id=session_id, user_id=user_id)
        return True

    async def destroy_all_user_sessions(self, user_id: str) -> int:
        """Delete every session of a user plus the index set in one round trip."""
        logger.info("session_destroy_all_started", user_id=user_id)
        set_key = self._user_sessions.key(user_id)
        session_ids = await self.backend.smembers(set_key)
        pipe = self.backend.pipeline()
        for session_id in session_ids:
            pipe.delete(self._sessions.key(session_id))
        pipe.delete(set_key)
        await pipe.execute()
        if not session_ids:
            logger.info("session_destroy_all_empty", user_id=user_id)
            return 0
        logger.info(
            "session_destroy_all_completed",
            user_id=user_id,
            sessions_destroyed=len(session_ids),
        )
        return len(session_ids)

    async def get_active_session_count(self, user_id: str) -> int:
        return await self.backend.scard(self._user_sessions.key(user_id))

    async def get_device_session(self, user_id: str, user_agent: str) -> Optional[str]:
        """Id of the session the device currently holds, if any."""
        return await self.backend.get(self._device_sessions.key(user_id, user_agent))


__all__ = ["SessionStore"]
