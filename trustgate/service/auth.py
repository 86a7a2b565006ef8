from __future__ import annotations

import asyncio
import random
import secrets
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from trustgate.logging import get_logger
from trustgate.service.brute_force import LoginGuards
from trustgate.service.csrf import CsrfGuard
from trustgate.service.errors import (
    AuthenticationError,
    BlockedError,
    ValidationError,
)
from trustgate.service.sessions import SessionStore
from trustgate.storage.models import SessionRecord, User

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
REGISTRATION_FAILED = "Registration failed. Please try again."
UNKNOWN_CLIENT = "unknown"


class UserDirectory(Protocol):
    async def get_user_by_email(self, email: str) -> Optional[Tuple[User, str]]:
        """Return the user and their stored password hash."""

    async def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: str,
        last_name: str,
    ) -> User:
        ...


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthenticationFlow:
    """Register, login, logout and whoami on top of the trust primitives.

    Rejections caused by a lock never say which identifier is locked, and
    unknown emails cost the same hash verification as known ones.
    """

    def __init__(
        self,
        users: UserDirectory,
        sessions: SessionStore,
        guards: LoginGuards,
        csrf: CsrfGuard,
        *,
        hasher: Optional[PasswordHasher] = None,
        honeypot_delay: Tuple[float, float] = (0.1, 0.3),
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.guards = guards
        self.csrf = csrf
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)
        self._honeypot_delay = honeypot_delay
        # verified against when the email is unknown
        self._dummy_hash = self._pwd_hasher.hash(secrets.token_hex(16))

    async def register(
        self,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        ip: Optional[str],
        user_agent: Optional[str],
        honeypot: Optional[str] = None,
    ) -> User:
        email = normalize_email(email)
        ip = ip or UNKNOWN_CLIENT
        user_agent = user_agent or UNKNOWN_CLIENT
        logger.info("registration_started", email=email)

        await self._refuse_blocked_client(ip, user_agent)
        if honeypot:
            logger.warning("registration_honeypot_triggered", email=email, ip=ip)
            await self._trap_bot(ip, user_agent)
            raise ValidationError(REGISTRATION_FAILED)
        if password != confirm_password:
            raise ValidationError(
                "Passwords do not match.", detail={"field": "confirm_password"}
            )
        if await self.users.get_user_by_email(email) is not None:
            logger.warning("registration_email_taken", email=email)
            raise ValidationError(REGISTRATION_FAILED)

        password_hash = self._pwd_hasher.hash(password)
        user = await self.users.create_user(
            email, password_hash, first_name=first_name, last_name=last_name
        )
        logger.info("registration_completed", user_id=user.id)
        return user

    async def login(
        self,
        email: str,
        password: str,
        ip: Optional[str],
        user_agent: Optional[str],
        honeypot: Optional[str] = None,
    ) -> Tuple[User, str]:
        """Check credentials and open a session for this device.

        Returns:
            The user and the new session id

        Raises:
            BlockedError: the IP, device or email is locked
            AuthenticationError: bad credentials or honeypot trip
            SessionLimitExceeded: the user already holds the maximum sessions
        """
        email = normalize_email(email)
        ip = ip or UNKNOWN_CLIENT
        user_agent = user_agent or UNKNOWN_CLIENT
        logger.info("login_started", email=email, ip=ip)

        await self._refuse_blocked_client(ip, user_agent)
        if await self.guards.email.is_blocked(email):
            logger.warning("login_refused_email_locked", email=email)
            raise BlockedError()

        if honeypot:
            logger.warning("login_honeypot_triggered", email=email, ip=ip)
            await self._trap_bot(ip, user_agent)
            raise AuthenticationError(INVALID_CREDENTIALS)

        found = await self.users.get_user_by_email(email)
        stored_hash = found[1] if found and found[1] else self._dummy_hash
        password_ok = self._verify_password(stored_hash, password)
        if found is None or not password_ok or not found[0].is_active:
            await self.guards.ip.record_failed_attempt(ip)
            await self.guards.device.record_failed_attempt(user_agent)
            await self.guards.email.record_failed_attempt(email)
            logger.warning("login_failed", email=email, ip=ip)
            raise AuthenticationError(INVALID_CREDENTIALS)

        user = found[0]
        await self.guards.ip.clear_attempts(ip)
        await self.guards.device.clear_attempts(user_agent)
        await self.guards.email.clear_attempts(email)

        previous = await self.sessions.get_device_session(user.id, user_agent)
        if previous:
            await self.sessions.destroy_session(previous)
            logger.info("login_replaced_device_session", user_id=user.id, old_session_id=previous)

        session_id = await self.sessions.create_session(user, ip, user_agent)
        logger.info("login_completed", user_id=user.id, session_id=session_id)
        return user, session_id

    async def logout(self, session_id: Optional[str]) -> int:
        """End every session of the caller's user; returns how many were removed."""
        record = await self.sessions.validate_session(session_id)
        if record is None:
            raise AuthenticationError("Invalid session")
        destroyed = await self.sessions.destroy_all_user_sessions(record.user_id)
        await self.csrf.delete_token(record.session_id)
        logger.info("logout_completed", user_id=record.user_id, sessions_destroyed=destroyed)
        return destroyed

    async def me(self, session_id: Optional[str]) -> SessionRecord:
        record = await self.sessions.validate_session(session_id)
        if record is None:
            raise AuthenticationError("Unauthorized")
        return record

    async def _refuse_blocked_client(self, ip: str, user_agent: str) -> None:
        if await self.guards.ip.is_blocked(ip):
            logger.warning("request_refused_ip_locked", ip=ip)
            raise BlockedError()
        if await self.guards.device.is_blocked(user_agent):
            logger.warning("request_refused_device_locked", ip=ip)
            raise BlockedError()

    async def _trap_bot(self, ip: str, user_agent: str) -> None:
        low, high = self._honeypot_delay
        await asyncio.sleep(random.uniform(low, high))
        await self.guards.ip.lock(ip)
        await self.guards.device.lock(user_agent)

    def _verify_password(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False


__all__ = [
    "AuthenticationFlow",
    "UserDirectory",
    "normalize_email",
]
