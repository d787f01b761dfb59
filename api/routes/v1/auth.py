"""
api/routes/v1/auth.py -- Authentication, account and session REST endpoints.

Routes:
  POST   /api/v1/auth/register              -- create account; returns a token pair
  POST   /api/v1/auth/login                 -- password login; returns a token pair
  POST   /api/v1/auth/refresh               -- rotate refresh token; returns a new pair
  POST   /api/v1/auth/logout                -- revoke current access token and session
  GET    /api/v1/auth/me                    -- current identity, roles and permissions
  POST   /api/v1/auth/verify-email          -- confirm email with the mailed token
  POST   /api/v1/auth/resend-verification   -- mail a fresh verification token
  POST   /api/v1/auth/forgot-password       -- mail a reset token (never reveals existence)
  POST   /api/v1/auth/reset-password        -- set password with the mailed token
  POST   /api/v1/auth/change-password       -- set password with the current one
  GET    /api/v1/auth/sessions              -- list the caller's active sessions
  DELETE /api/v1/auth/sessions/{id}         -- revoke one of the caller's sessions
  POST   /api/v1/auth/sessions/revoke-others -- revoke every session but the current one
  DELETE /api/v1/auth/sessions              -- revoke every session ("log out everywhere")

Security:
  [H2] register, login and forgot-password are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  IDOR guard: DELETE /sessions/{id} passes the caller's id to the registry,
  which checks ownership.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import credential_rate_limit, limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    RevokedCountResponse,
    SessionResponse,
    UserResponse,
    VerifyEmailRequest,
)
from api.services import Services
from auth.dependencies import current_context, raise_for_failure, refresh_token_from
from auth.errors import ErrorCode, Failure
from auth.guard import AuthContext
from auth.models import TokenPair
from auth.tokens import authenticate_user, clear_refresh_cookie, set_refresh_cookie

logger = logging.getLogger("gatehouse.api")

# Auth policy:
# - register, login, refresh, verify-email, forgot-password, reset-password: public
# - everything else: requires a valid, unrevoked access token (current_context)
router = APIRouter()


def _services(request: Request) -> Services:
    return request.app.state.services


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _token_response(services: Services, pair: TokenPair, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_pair(pair).model_dump(by_alias=True),
    )
    set_refresh_cookie(
        resp,
        pair.refresh_token,
        max_age=services.settings.refresh_token_expire_days * 24 * 3600,
        secure=services.settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, mail its verification token, and log it in."""
    services = _services(request)
    user = services.accounts.register(body.email, body.password, body.first_name, body.last_name)
    if isinstance(user, Failure):
        raise_for_failure(user)
    pair = services.issuer.issue(user, user_agent=request.headers.get("User-Agent"), ip_address=_client_ip(request))
    return _token_response(services, pair, status_code=201)


@limiter.limit(credential_rate_limit)  # [H2]
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a new session.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials") to avoid leaking account existence.
    """
    services = _services(request)
    user = authenticate_user(services.users, body.email, body.password, rounds=services.settings.bcrypt_rounds)
    if user is None:
        logger.info("Failed login from %s", _client_ip(request))
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": ErrorCode.bad_credentials.value, "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    services.users.update_last_login(user.id)
    pair = services.issuer.issue(user, user_agent=request.headers.get("User-Agent"), ip_address=_client_ip(request))
    return _token_response(services, pair)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Exchange a refresh token for a new token pair. Each refresh token works once."""
    services = _services(request)
    token = refresh_token_from(request, body.refresh_token if body else None)
    if not token:
        raise_for_failure(Failure(ErrorCode.invalid_token, "Refresh token required."))
    pair = services.issuer.refresh(token, user_agent=request.headers.get("User-Agent"), ip_address=_client_ip(request))
    if isinstance(pair, Failure):
        raise_for_failure(pair)
    return _token_response(services, pair)


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    result = _services(request).accounts.verify_email(body.token)
    if isinstance(result, Failure):
        raise_for_failure(result)
    return MessageResponse(message="Email verified.")


@limiter.limit(credential_rate_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Always answers with the same message, registered or not."""
    _services(request).accounts.forgot_password(body.email)
    return MessageResponse(message="If that account exists, a reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    failure = _services(request).accounts.reset_password(body.token, body.new_password)
    if failure is not None:
        raise_for_failure(failure)
    return MessageResponse(message="Password has been reset. Please log in again.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, ctx: AuthContext = Depends(current_context)) -> JSONResponse:
    """Blacklist the presented access token and end its session."""
    failure = _services(request).issuer.revoke(ctx.token, reason="logout")
    if failure is not None:
        raise_for_failure(failure)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_refresh_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, ctx: AuthContext = Depends(current_context)) -> MeResponse:
    """Return the caller's identity with their roles and effective permissions."""
    graph = _services(request).graph
    user = ctx.user
    return MeResponse(
        **UserResponse.from_user(user).model_dump(),
        session_id=ctx.session_id,
        roles=[r.name for r in graph.user_roles(user.id)],
        permissions=sorted(ctx.permissions),
    )


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, ctx: AuthContext = Depends(current_context)) -> MessageResponse:
    if ctx.user.is_email_verified:
        return MessageResponse(message="Email is already verified.")
    failure = _services(request).accounts.resend_verification(ctx.user.id)
    if failure is not None:
        raise_for_failure(failure)
    return MessageResponse(message="Verification email sent.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    ctx: AuthContext = Depends(current_context),
) -> MessageResponse:
    """Change the password and revoke every session, this one included."""
    services = _services(request)
    failure = services.accounts.change_password(ctx.user.id, body.current_password, body.new_password)
    if failure is not None:
        raise_for_failure(failure)
    services.issuer.revoke(ctx.token, reason="password_change")
    return MessageResponse(message="Password changed. Please log in again.")


# ---------------------------------------------------------------------------
# Session management (authenticated)
# ---------------------------------------------------------------------------


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, ctx: AuthContext = Depends(current_context)) -> list[SessionResponse]:
    infos = _services(request).sessions.list(ctx.user.id, current_session_id=ctx.session_id)
    return [SessionResponse.from_info(i) for i in infos]


@router.delete("/auth/sessions/{session_id}", status_code=204)
def revoke_session(request: Request, session_id: int, ctx: AuthContext = Depends(current_context)) -> Response:
    """Revoke one session. Ownership is verified server-side [IDOR guard]."""
    failure = _services(request).sessions.revoke(session_id, ctx.user.id)
    if failure is not None:
        raise_for_failure(failure)
    return Response(status_code=204)


@router.post("/auth/sessions/revoke-others", response_model=RevokedCountResponse)
def revoke_other_sessions(request: Request, ctx: AuthContext = Depends(current_context)) -> RevokedCountResponse:
    count = _services(request).sessions.revoke_others(ctx.user.id, ctx.session_id)
    return RevokedCountResponse(message="Other sessions revoked.", revoked=count)


@router.delete("/auth/sessions", response_model=RevokedCountResponse)
def revoke_all_sessions(request: Request, ctx: AuthContext = Depends(current_context)) -> JSONResponse:
    """Log out everywhere: every session ends and the presented token is blacklisted."""
    services = _services(request)
    count = services.sessions.revoke_all(ctx.user.id, "logout_all")
    services.issuer.revoke(ctx.token, reason="logout_all")
    resp = JSONResponse(
        content=RevokedCountResponse(message="All sessions revoked.", revoked=count).model_dump(by_alias=True)
    )
    clear_refresh_cookie(resp)
    return resp
