from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from trustgate.api.dependencies import (
    CSRF_HEADER,
    client_ip,
    csrf_protection,
    current_session,
    email_blocklist,
    get_runtime,
    ip_blocklist,
    rate_limited,
    session_id_from_request,
    user_agent,
)
from trustgate.api.schemas import (
    AuthResponse,
    CsrfTokenResponse,
    Envelope,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
    SessionCountResponse,
    SessionResponse,
    UserProfile,
)
from trustgate.logging import get_logger
from trustgate.service.errors import ValidationError
from trustgate.service.runtime import Runtime
from trustgate.storage.models import SessionRecord, User

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _ok(data) -> Envelope:
    return Envelope(status="ok", data=data)


def _profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        avatar_url=user.avatar_url,
        is_admin=user.is_admin,
        is_verified=user.is_verified,
        is_active=user.is_active,
    )


def _set_session_cookie(response: Response, runtime: Runtime, session_id: str) -> None:
    settings = runtime.settings
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_cookie_max_age_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
    )


def _clear_session_cookie(response: Response, runtime: Runtime) -> None:
    settings = runtime.settings
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
    )


@router.post(
    "/register",
    response_model=Envelope,
    status_code=201,
    dependencies=[
        Depends(rate_limited("register")),
        Depends(email_blocklist),
        Depends(ip_blocklist),
        Depends(csrf_protection),
    ],
)
async def register(
    body: RegisterRequest,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    """Create an account. Does not log the new user in."""
    user = await runtime.auth.register(
        email=body.email,
        password=body.password,
        confirm_password=body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
        ip=client_ip(request),
        user_agent=user_agent(request),
        honeypot=body.honeypot,
    )
    return _ok(
        AuthResponse(
            user=_profile(user), message="Registration successful!", redirect="/login"
        )
    )


@router.post(
    "/login",
    response_model=Envelope,
    dependencies=[
        Depends(rate_limited("login")),
        Depends(email_blocklist),
        Depends(ip_blocklist),
        Depends(csrf_protection),
    ],
)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Check credentials, set the session cookie and rebind CSRF to the new session.

    Raises:
        401: invalid credentials
        403: the IP, device or email is temporarily blocked
        409: the account already holds the maximum number of sessions
        429: too many login requests from this IP
    """
    user, session_id = await runtime.auth.login(
        email=body.email,
        password=body.password,
        ip=client_ip(request),
        user_agent=user_agent(request),
        honeypot=body.honeypot,
    )
    pre_login_id = session_id_from_request(request, runtime)
    if pre_login_id and pre_login_id != session_id:
        await runtime.csrf.delete_token(pre_login_id)
    response.headers[CSRF_HEADER] = await runtime.csrf.generate_token(session_id)
    _set_session_cookie(response, runtime, session_id)
    logger.info("session_cookie_set", user_id=user.id)
    redirect = "/admin/dashboard" if user.is_admin else "/user/dashboard"
    return _ok(
        AuthResponse(user=_profile(user), message="Login successful!", redirect=redirect)
    )


@router.post(
    "/logout",
    response_model=Envelope,
    dependencies=[
        Depends(rate_limited("logout")),
        Depends(ip_blocklist),
        Depends(csrf_protection),
    ],
)
async def logout(
    response: Response,
    session: SessionRecord = Depends(current_session),
    runtime: Runtime = Depends(get_runtime),
):
    """End every session of the current user on every device."""
    destroyed = await runtime.auth.logout(session.session_id)
    _clear_session_cookie(response, runtime)
    return _ok(LogoutResponse(message="Logout successful", sessions_destroyed=destroyed))


@router.get(
    "/me",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("me")), Depends(ip_blocklist)],
)
async def me(request: Request, runtime: Runtime = Depends(get_runtime)):
    record = await runtime.auth.me(session_id_from_request(request, runtime))
    return _ok(SessionResponse(**record.public_view()))


@router.get(
    "/csrf-token",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("csrf-token")), Depends(ip_blocklist)],
)
async def csrf_token(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Issue a CSRF token bound to the session cookie or ``X-Session-ID``.

    Clients without a session yet send any opaque id in ``X-Session-ID`` and
    reuse it on the following register or login request.
    """
    session_id = session_id_from_request(request, runtime)
    if not session_id:
        raise ValidationError("Session ID required")
    token = await runtime.csrf.generate_token(session_id)
    return _ok(CsrfTokenResponse(csrf_token=token))


@router.get(
    "/sessions",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("sessions")), Depends(ip_blocklist)],
)
async def sessions(
    session: SessionRecord = Depends(current_session),
    runtime: Runtime = Depends(get_runtime),
):
    active = await runtime.sessions.get_active_session_count(session.user_id)
    return _ok(
        SessionCountResponse(
            active_sessions=active,
            max_active_sessions=runtime.sessions.max_active_sessions,
        )
    )
