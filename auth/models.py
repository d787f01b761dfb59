"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores build these
from rows; services and routes read them. Timestamps are ISO-8601 UTC strings
exactly as persisted (see core/clock.to_iso), so they compare correctly as
strings.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered identity.

    email is always stored lower-case and is the login name. The
    verification and reset token fields are None unless a flow is pending;
    they are cleared once the flow completes.
    """

    email: str
    hashed_password: str
    first_name: str = ""
    last_name: str = ""
    id: int | None = None
    is_active: bool = True
    is_email_verified: bool = False
    email_verification_token: str | None = None
    email_verification_expires: str | None = None
    password_reset_token: str | None = None
    password_reset_expires: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """One refresh-token/device pairing.

    refresh_token_hash is HMAC-SHA256(SECRET_KEY, refresh_token); the raw
    token is returned to the client once and never persisted.

    revoked_reason records why is_active went false: "rotated" (superseded by
    refresh, replaced_by_id points at the successor), "logout", "revoked",
    "reuse_detected", "password_change", "password_reset", "revoke_others".
    """

    user_id: int
    refresh_token_hash: str
    expires_at: str
    id: int | None = None
    device_name: str | None = None
    device_type: str = "unknown"
    ip_address: str | None = None
    user_agent: str | None = None
    last_activity_at: str | None = None
    is_active: bool = True
    revoked_reason: str | None = None
    replaced_by_id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SessionInfo:
    """Client-facing view of an active session."""

    id: int
    device_name: str | None
    device_type: str
    ip_address: str | None
    last_activity_at: str
    created_at: str
    expires_at: str
    is_current: bool = False


@dataclass
class RevokedToken:
    """A blacklist entry. token_hash is HMAC-SHA256 of the access token."""

    token_hash: str
    expires_at: str
    reason: str
    user_id: int | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class DeviceInfo:
    device_type: str  # "desktop", "mobile", "tablet", "unknown"
    browser: str
    os: str

    @property
    def device_name(self) -> str:
        return f"{self.browser} on {self.os}"


@dataclass
class TokenPair:
    """Returned by TokenIssuer.issue() and refresh(). expires_at is the access token expiry."""

    access_token: str
    refresh_token: str
    expires_at: str
    session_id: int
    user: User
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
