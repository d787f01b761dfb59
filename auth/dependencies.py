"""
auth/dependencies.py -- FastAPI Depends() helpers around AuthorizationGuard.

Routes declare what they need with a RouteRequirements value:

    @router.get("/roles")
    async def list_roles(ctx: AuthContext = Depends(authorize(RouteRequirements(permissions=("roles:read",))))):

authorize() turns that value into a dependency that runs the guard, maps a
Failure to HTTPException(detail={"code", "message"}), touches the session's
last_activity_at on success, and stores the AuthContext on request.state.auth.

Access tokens are read from the Authorization: Bearer header only. Refresh
tokens come from the request body, the X-Refresh-Token header, or the
httpOnly refresh cookie, in that order.

Layer rule: no imports from api/. The assembled services object is read from
request.app.state.services by attribute.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import NoReturn

from fastapi import HTTPException, Request

from auth.errors import ErrorCode, Failure
from auth.guard import PUBLIC_IDENTITY, AuthContext, RouteRequirements
from auth.tokens import REFRESH_COOKIE


def raise_for_failure(failure: Failure) -> NoReturn:
    """Convert a domain Failure into the HTTPException the error handlers render."""
    headers = {"WWW-Authenticate": "Bearer"} if failure.code.status == 401 else None
    raise HTTPException(status_code=failure.code.status, detail=failure.as_detail(), headers=headers)


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def refresh_token_from(request: Request, body_token: str | None = None) -> str | None:
    return body_token or request.headers.get("X-Refresh-Token") or request.cookies.get(REFRESH_COOKIE)


def authorize(requirements: RouteRequirements = PUBLIC_IDENTITY) -> Callable[[Request], AuthContext]:
    """Build a dependency enforcing requirements on the current request."""

    def dependency(request: Request) -> AuthContext:
        services = request.app.state.services
        result = services.guard.authorize(bearer_token(request), requirements)
        if isinstance(result, Failure):
            raise_for_failure(result)
        services.sessions.touch(result.session_id)
        request.state.auth = result
        return result

    return dependency


current_context = authorize()


def require_rbac_enabled(request: Request) -> None:
    """Reject RBAC management routes with 403 when RBAC_ENABLED=false."""
    if not request.app.state.services.settings.rbac_enabled:
        raise_for_failure(Failure(ErrorCode.rbac_disabled, "Role-based access control is disabled."))
