from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """Profile fields copied into a session at login. Never carries the hash."""

    id: str
    email: str
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    is_admin: bool = False
    is_verified: bool = False
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        first_name: str,
        last_name: str,
        *,
        avatar_url: Optional[str] = None,
        is_admin: bool = False,
    ) -> "User":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            first_name=first_name,
            last_name=last_name,
            avatar_url=avatar_url,
            is_admin=is_admin,
        )


@dataclass
class UserCredential:
    user_id: str
    password_hash: str


@dataclass
class SessionRecord:
    """One logged-in device session as stored under ``session:<id>``."""

    session_id: str
    user_id: str
    email: str
    first_name: str
    last_name: str
    ip: str
    user_agent: str
    login_time: datetime
    last_activity: datetime
    avatar_url: Optional[str] = None
    is_admin: bool = False
    is_verified: bool = False
    is_active: bool = True

    @classmethod
    def for_user(
        cls, session_id: str, user: User, ip: str, user_agent: str
    ) -> "SessionRecord":
        now = utcnow()
        return cls(
            session_id=session_id,
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar_url=user.avatar_url or None,
            is_admin=user.is_admin,
            is_verified=user.is_verified,
            is_active=user.is_active,
            ip=ip,
            user_agent=user_agent,
            login_time=now,
            last_activity=now,
        )

    def to_json(self) -> str:
        payload = asdict(self)
        payload["login_time"] = self.login_time.isoformat()
        payload["last_activity"] = self.last_activity.isoformat()
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: str) -> "SessionRecord":
        """Parse a stored record.

        Raises:
            ValueError: if the payload is not a complete session record
        """
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError("session record is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValueError("session record must be a JSON object")
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in payload.items() if key in known}
        try:
            data["login_time"] = _parse_timestamp(data["login_time"])
            data["last_activity"] = _parse_timestamp(data["last_activity"])
            return cls(**data)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"session record is incomplete: {exc}") from exc

    def public_view(self) -> dict:
        """Fields safe to return to the session owner."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "avatar_url": self.avatar_url,
            "is_admin": self.is_admin,
            "is_verified": self.is_verified,
            "is_active": self.is_active,
            "login_time": self.login_time.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
