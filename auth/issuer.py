"""
auth/issuer.py -- Token issuer: access/refresh pairs, rotation, revocation.

issue() creates the session first and then signs the access token, so the
sid claim always names a real session row. refresh() implements one-time-use
refresh tokens with replay detection:

  * unknown refresh token                          -> invalid_token
  * session rotated earlier (token replayed)       -> token_reuse_detected,
    and every session of the user is revoked, since either the legitimate
    client or an attacker holds a stolen token and we cannot tell which
  * session revoked for any other reason            -> session_revoked
  * session past expires_at                         -> token_expired
  * owner missing or deactivated                    -> unauthenticated

verify() is the low-level access-token check: signature, expiry against the
injected clock, then the revocation ledger.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.blacklist import RevocationLedger
from auth.errors import ErrorCode, Failure
from auth.models import TokenPair, User
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import (
    claims_user_id,
    create_access_token,
    decode_access_token,
    generate_refresh_token,
    hash_token,
)
from core.clock import Clock, to_iso, utc_now
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")


class TokenIssuer:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        sessions: SessionRegistry,
        ledger: RevocationLedger,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.users = users
        self.sessions = sessions
        self.ledger = ledger
        self._clock = clock

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def _hash(self, raw: str) -> str:
        return hash_token(raw, self.settings.secret_key)

    def _sign(self, user: User, session_id: int, issued_at: datetime) -> tuple[str, datetime]:
        return create_access_token(
            user_id=user.id,
            email=user.email,
            session_id=session_id,
            secret_key=self.settings.secret_key,
            issued_at=issued_at,
            expire_seconds=self.settings.access_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue / refresh
    # ------------------------------------------------------------------

    def issue(self, user: User, user_agent: str | None = None, ip_address: str | None = None) -> TokenPair:
        """Open a new session for user and return its token pair."""
        now = self._clock()
        refresh_token = generate_refresh_token()
        session = self.sessions.create(
            user.id,
            self._hash(refresh_token),
            now + self.refresh_ttl,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        access_token, expires_at = self._sign(user, session.id, now)
        logger.info("Issued session %s for user %s", session.id, user.id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=to_iso(expires_at),
            session_id=session.id,
            user=user,
        )

    def refresh(
        self,
        refresh_token: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> TokenPair | Failure:
        """Exchange a refresh token for a new pair. Each refresh token works once."""
        session = self.sessions.get_by_refresh_hash(self._hash(refresh_token))
        if session is None:
            return Failure(ErrorCode.invalid_token, "Invalid refresh token.")

        if not session.is_active:
            if session.revoked_reason == "rotated":
                revoked = self.sessions.revoke_all(session.user_id, "reuse_detected")
                logger.warning(
                    "Refresh token reuse detected for user %s (session %s); revoked %d sessions",
                    session.user_id,
                    session.id,
                    revoked,
                )
                return Failure(ErrorCode.token_reuse_detected, "Refresh token reuse detected.")
            return Failure(ErrorCode.session_revoked, "Session has been revoked.")

        now = self._clock()
        if session.expires_at <= to_iso(now):
            return Failure(ErrorCode.token_expired, "Refresh token has expired.")

        user = self.users.get_by_id(session.user_id)
        if user is None or not user.is_active:
            self.sessions.deactivate(session.id, "revoked")
            return Failure(ErrorCode.unauthenticated, "Account is not active.")

        new_refresh = generate_refresh_token()
        new_session = self.sessions.rotate(
            session,
            self._hash(new_refresh),
            now + self.refresh_ttl,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        if new_session is None:
            return Failure(ErrorCode.session_revoked, "Session has been revoked.")

        access_token, expires_at = self._sign(user, new_session.id, now)
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh,
            expires_at=to_iso(expires_at),
            session_id=new_session.id,
            user=user,
        )

    # ------------------------------------------------------------------
    # Verify / revoke
    # ------------------------------------------------------------------

    def verify(self, access_token: str) -> dict | Failure:
        """Return the token's claims if it is authentic, unexpired and not revoked."""
        claims = decode_access_token(access_token, self.settings.secret_key)
        if claims is None:
            return Failure(ErrorCode.invalid_token, "Invalid access token.")
        if claims["exp"] <= int(self._clock().timestamp()):
            return Failure(ErrorCode.token_expired, "Access token has expired.")
        if self.ledger.is_revoked(access_token):
            return Failure(ErrorCode.session_revoked, "Access token has been revoked.")
        return claims

    def revoke(self, access_token: str, reason: str = "logout") -> Failure | None:
        """Blacklist access_token until its exp and deactivate its session.

        The token must carry a valid signature; expired tokens are accepted so
        a client can always log out.
        """
        claims = decode_access_token(access_token, self.settings.secret_key)
        if claims is None:
            return Failure(ErrorCode.invalid_token, "Invalid access token.")
        user_id = claims_user_id(claims)
        expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        self.ledger.add(access_token, user_id, expires_at, reason)
        self.sessions.deactivate(int(claims["sid"]), reason)
        logger.info("Revoked access token for user %s (session %s, %s)", user_id, claims["sid"], reason)
        return None
