from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, Request, Response

from trustgate.logging import get_logger
from trustgate.service.errors import (
    AuthenticationError,
    BlockedError,
    InvalidCsrfToken,
    ValidationError,
)
from trustgate.service.runtime import Runtime
from trustgate.storage.models import SessionRecord

logger = get_logger(__name__)

SESSION_HEADER = "X-Session-ID"
CSRF_HEADER = "X-CSRF-Token"
CSRF_BODY_FIELD = "_csrf"
_CSRF_SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def client_ip(request: Request) -> str:
    return request.client.host if request.client and request.client.host else "unknown"


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"


def session_id_from_request(request: Request, runtime: Runtime) -> Optional[str]:
    """Session id from the session cookie, falling back to ``X-Session-ID``."""
    return request.cookies.get(runtime.settings.session_cookie_name) or request.headers.get(
        SESSION_HEADER
    )


async def _json_body(request: Request) -> dict[str, Any]:
    # Starlette caches the body, so the route can still parse it afterwards
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def rate_limited(route_class: str) -> Callable[..., Awaitable[None]]:
    """Dependency factory counting the request against ``route_class``."""

    async def _enforce(request: Request, runtime: Runtime = Depends(get_runtime)) -> None:
        await runtime.rate_limiter.enforce(route_class, client_ip(request))

    return _enforce


async def ip_blocklist(request: Request, runtime: Runtime = Depends(get_runtime)) -> None:
    """Reject locked IPs. A backend outage lets the request through."""
    ip = client_ip(request)
    if await runtime.guards.ip.is_blocked(ip, fail_open=True):
        logger.warning("blocked_ip_rejected", ip=ip, path=request.url.path)
        raise BlockedError()


async def email_blocklist(request: Request, runtime: Runtime = Depends(get_runtime)) -> None:
    """Reject locked emails named in the JSON body. Fails open like the IP check."""
    email = (await _json_body(request)).get("email")
    if not isinstance(email, str) or not email.strip():
        return
    if await runtime.guards.email.is_blocked(email, fail_open=True):
        logger.warning("blocked_email_rejected", email=email, path=request.url.path)
        raise BlockedError()


async def current_session(
    request: Request, runtime: Runtime = Depends(get_runtime)
) -> SessionRecord:
    session_id = session_id_from_request(request, runtime)
    if not session_id:
        raise AuthenticationError("Unauthorized")
    record = await runtime.sessions.validate_session(session_id)
    if record is None:
        raise AuthenticationError("Unauthorized")
    return record


async def csrf_protection(
    request: Request,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
) -> None:
    """Check and rotate the CSRF token on state-changing requests.

    The token is bound to the same session id :func:`current_session`
    authorizes (cookie first, then ``X-Session-ID``) and is read from
    ``X-CSRF-Token`` or a ``_csrf`` body field. The replacement token is
    returned in the ``X-CSRF-Token`` response header.
    """
    if request.method.upper() in _CSRF_SAFE_METHODS:
        return
    session_id = session_id_from_request(request, runtime)
    if not session_id:
        raise ValidationError("Session ID required")
    token = request.headers.get(CSRF_HEADER)
    if not token:
        body_token = (await _json_body(request)).get(CSRF_BODY_FIELD)
        token = body_token if isinstance(body_token, str) else None
    if not token:
        logger.warning("csrf_token_missing", session_id=session_id, method=request.method)
        raise InvalidCsrfToken()
    if not await runtime.csrf.validate_token(session_id, token):
        raise InvalidCsrfToken()
    response.headers[CSRF_HEADER] = await runtime.csrf.refresh_token(session_id)
