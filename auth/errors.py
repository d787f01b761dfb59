"""
auth/errors.py -- Typed failure values returned by domain operations.

Domain code (issuer, registry, graph, guard, accounts) never raises for an
expected outcome such as "wrong password" or "role is protected". It returns
a Failure instead, and callers branch with isinstance(result, Failure). Only
the HTTP layer turns a Failure into a status code, via ErrorCode.status.

Unexpected conditions (store outages, programming errors) still raise and are
handled by the catch-all exception handler in api/main.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    unauthenticated = "unauthenticated"
    bad_credentials = "bad_credentials"
    invalid_token = "invalid_token"
    token_expired = "token_expired"
    session_revoked = "session_revoked"
    token_reuse_detected = "token_reuse_detected"
    email_not_verified = "email_not_verified"
    forbidden = "forbidden"
    system_role_protected = "system_role_protected"
    rbac_disabled = "rbac_disabled"
    not_found = "not_found"
    duplicate_name = "duplicate_name"
    conflict = "conflict"
    permission_in_use = "permission_in_use"
    unknown_permission_id = "unknown_permission_id"
    invalid_request = "invalid_request"
    internal_error = "internal_error"

    @property
    def status(self) -> int:
        return _STATUS.get(self, 500)


_STATUS: dict[ErrorCode, int] = {
    ErrorCode.unauthenticated: 401,
    ErrorCode.bad_credentials: 401,
    ErrorCode.invalid_token: 401,
    ErrorCode.token_expired: 401,
    ErrorCode.session_revoked: 401,
    ErrorCode.token_reuse_detected: 401,
    ErrorCode.email_not_verified: 403,
    ErrorCode.forbidden: 403,
    ErrorCode.system_role_protected: 403,
    ErrorCode.rbac_disabled: 403,
    ErrorCode.not_found: 404,
    ErrorCode.duplicate_name: 409,
    ErrorCode.conflict: 409,
    ErrorCode.permission_in_use: 409,
    ErrorCode.unknown_permission_id: 400,
    ErrorCode.invalid_request: 400,
    ErrorCode.internal_error: 500,
}


@dataclass(frozen=True)
class Failure:
    """A denied or failed operation: a machine-readable code plus a message."""

    code: ErrorCode
    message: str

    def as_detail(self) -> dict:
        return {"code": self.code.value, "message": self.message}
