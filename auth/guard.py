"""
auth/guard.py -- Request-time authorization decision.

authorize() runs a fixed identity pipeline followed by the checks a route
asks for through its RouteRequirements value. The first failing step decides
the outcome:

  1. a token was presented                         else unauthenticated
  2. signature valid and not expired               else unauthenticated
  3. token not in the revocation ledger            else unauthenticated
  4. the user exists and is active                 else unauthenticated
  5. email verified (if required)                  else email_not_verified
  6. every listed permission held (if any listed)  else forbidden

Steps 5 and 6 are Check callables built by checks_for(), so new per-route
checks slot in without touching the pipeline. Step 6 is skipped entirely when
RBAC_ENABLED=false. Either way an allowed request carries the user's effective
permission names in AuthContext.permissions.

The guard has no FastAPI dependency; auth/dependencies.py adapts it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from auth.errors import ErrorCode, Failure
from auth.issuer import TokenIssuer
from auth.models import User
from auth.store import UserStore
from auth.tokens import claims_user_id
from rbac.store import PermissionGraph

logger = logging.getLogger("gatehouse.auth")


@dataclass(frozen=True)
class RouteRequirements:
    """What a route demands beyond a valid identity."""

    require_verified_email: bool = False
    permissions: tuple[str, ...] = ()


PUBLIC_IDENTITY = RouteRequirements()


@dataclass
class AuthContext:
    """The result of a successful authorization.

    permissions holds every permission name the user holds through their roles,
    whether or not the route asked for any.
    """

    user: User
    claims: dict
    session_id: int
    token: str
    permissions: frozenset[str] = field(default_factory=frozenset)


Check = Callable[[AuthContext], "Failure | None"]


def require_verified_email(ctx: AuthContext) -> Failure | None:
    if not ctx.user.is_email_verified:
        return Failure(ErrorCode.email_not_verified, "Email address has not been verified.")
    return None


class AuthorizationGuard:
    def __init__(self, issuer: TokenIssuer, users: UserStore, graph: PermissionGraph, rbac_enabled: bool = True):
        self.issuer = issuer
        self.users = users
        self.graph = graph
        self.rbac_enabled = rbac_enabled

    def _require_permissions(self, required: tuple[str, ...]) -> Check:
        def check(ctx: AuthContext) -> Failure | None:
            missing = [name for name in required if name not in ctx.permissions]
            if missing:
                logger.info("User %s denied: missing %s", ctx.user.id, ", ".join(missing))
                return Failure(ErrorCode.forbidden, "Insufficient permissions.")
            return None

        return check

    def checks_for(self, requirements: RouteRequirements) -> list[Check]:
        checks: list[Check] = []
        if requirements.require_verified_email:
            checks.append(require_verified_email)
        if requirements.permissions and self.rbac_enabled:
            checks.append(self._require_permissions(tuple(requirements.permissions)))
        return checks

    def authenticate(self, token: str | None) -> AuthContext | Failure:
        """Steps 1-4: resolve a bearer token to an active user."""
        if not token:
            return Failure(ErrorCode.unauthenticated, "Authentication required.")
        claims = self.issuer.verify(token)
        if isinstance(claims, Failure):
            return Failure(ErrorCode.unauthenticated, claims.message)
        user = self.users.get_by_id(claims_user_id(claims))
        if user is None or not user.is_active:
            return Failure(ErrorCode.unauthenticated, "Account is not active.")
        return AuthContext(user=user, claims=claims, session_id=int(claims["sid"]), token=token)

    def authorize(self, token: str | None, requirements: RouteRequirements = PUBLIC_IDENTITY) -> AuthContext | Failure:
        """Return an AuthContext (allow) or the Failure of the first step that denied."""
        ctx = self.authenticate(token)
        if isinstance(ctx, Failure):
            return ctx
        ctx.permissions = frozenset(self.graph.effective_permission_names(ctx.user.id))
        for check in self.checks_for(requirements):
            failure = check(ctx)
            if failure is not None:
                return failure
        return ctx
