"""
auth/sessions.py -- Session registry: one row per refresh-token/device pairing.

Pattern: Repository + Data Mapper, same as auth/store.py.

Refresh rotation:
  rotate() deactivates the old session and inserts its successor inside one
  transaction. The deactivation is a compare-and-swap
  (UPDATE ... WHERE id = :id AND is_active = 1); if another request already
  rotated or revoked the session, rowcount is 0 and nothing is written. At
  most one of two concurrent refreshes with the same token can succeed.

  The old row is kept with revoked_reason="rotated" and replaced_by_id set,
  which is what lets TokenIssuer recognize a replayed refresh token.

Retention:
  cleanup_expired() removes sessions past expires_at. cleanup_inactive()
  removes deactivated sessions untouched for N days. Both run from the
  background sweep in api/main.py and from `main.py sweep`.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from auth.device import parse_user_agent
from auth.errors import ErrorCode, Failure
from auth.models import Session, SessionInfo
from core.clock import Clock, to_iso, utc_now
from core.schema import sessions as _sessions

logger = logging.getLogger("gatehouse.sessions")


class SessionRegistry:
    """Repository for Session records.

    Usage:
        registry = SessionRegistry(engine)
        session = registry.create(user_id, refresh_hash, expires_at, user_agent=ua, ip_address=ip)
        registry.list(user_id, current_session_id=session.id)
    """

    def __init__(self, engine: Engine, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: int,
        refresh_token_hash: str,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> Session:
        """Insert a new active session and return it.

        Raises sqlalchemy.exc.IntegrityError if refresh_token_hash already
        exists (a refresh token never backs two sessions).
        """
        with self.engine.connect() as conn:
            session = _insert_session(conn, user_id, refresh_token_hash, expires_at, user_agent, ip_address, self._now())
            conn.commit()
        return session

    def get(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_by_refresh_hash(self, refresh_token_hash: str) -> Session | None:
        """Look up a session (active or not) by refresh token hash. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(_sessions.c.refresh_token_hash == refresh_token_hash)
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list(self, user_id: int, current_session_id: int | None = None) -> list[SessionInfo]:
        """Return the user's active, unexpired sessions, most recently used first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    and_(
                        _sessions.c.user_id == user_id,
                        _sessions.c.is_active == 1,
                        _sessions.c.expires_at > self._now(),
                    )
                )
                .order_by(_sessions.c.last_activity_at.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [
            SessionInfo(
                id=row.id,
                device_name=row.device_name,
                device_type=row.device_type,
                ip_address=row.ip_address,
                last_activity_at=row.last_activity_at,
                created_at=row.created_at,
                expires_at=row.expires_at,
                is_current=row.id == current_session_id,
            )
            for row in rows
        ]

    def touch(self, session_id: int) -> None:
        """Best-effort last_activity_at update.

        Called on every authorized request. A locked or busy store must not
        fail the request, so OperationalError is logged and dropped.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _sessions.update()
                    .where(and_(_sessions.c.id == session_id, _sessions.c.is_active == 1))
                    .values(last_activity_at=self._now())
                )
                conn.commit()
        except OperationalError as exc:
            logger.warning("Could not update activity for session %s: %s", session_id, exc)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def deactivate(self, session_id: int, reason: str) -> bool:
        """Mark one session inactive. Returns False if it was not active."""
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(and_(_sessions.c.id == session_id, _sessions.c.is_active == 1))
                .values(is_active=0, revoked_reason=reason, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke(self, session_id: int, requesting_user_id: int, reason: str = "revoked") -> Failure | None:
        """Revoke a session on behalf of its owner.

        Ownership is checked server-side: a user cannot end another user's
        session even if they know its id (IDOR guard).
        """
        session = self.get(session_id)
        if session is None:
            return Failure(ErrorCode.not_found, "Session not found.")
        if session.user_id != requesting_user_id:
            return Failure(ErrorCode.forbidden, "Session belongs to another user.")
        if self.deactivate(session_id, reason):
            logger.info("Session %s revoked by user %s", session_id, requesting_user_id)
        return None

    def revoke_all(self, user_id: int, reason: str) -> int:
        """Deactivate every active session of user_id. Returns number deactivated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(and_(_sessions.c.user_id == user_id, _sessions.c.is_active == 1))
                .values(is_active=0, revoked_reason=reason, updated_at=self._now())
            )
            conn.commit()
        if result.rowcount:
            logger.info("Revoked %d sessions for user %s (%s)", result.rowcount, user_id, reason)
        return result.rowcount

    def revoke_others(self, user_id: int, current_session_id: int) -> int:
        """Deactivate every active session of user_id except current_session_id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    and_(
                        _sessions.c.user_id == user_id,
                        _sessions.c.is_active == 1,
                        _sessions.c.id != current_session_id,
                    )
                )
                .values(is_active=0, revoked_reason="revoke_others", updated_at=self._now())
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate(
        self,
        old_session: Session,
        new_refresh_token_hash: str,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> Session | None:
        """Atomically replace old_session with a fresh session.

        Returns the new Session, or None if old_session was no longer active
        when the compare-and-swap ran (another request won the race). In that
        case nothing is persisted.
        """
        now = self._now()
        with self.engine.begin() as conn:
            claimed = conn.execute(
                _sessions.update()
                .where(and_(_sessions.c.id == old_session.id, _sessions.c.is_active == 1))
                .values(is_active=0, revoked_reason="rotated", updated_at=now)
            )
            if claimed.rowcount != 1:
                return None
            new_session = _insert_session(
                conn,
                old_session.user_id,
                new_refresh_token_hash,
                expires_at,
                user_agent or old_session.user_agent,
                ip_address or old_session.ip_address,
                now,
            )
            conn.execute(
                _sessions.update().where(_sessions.c.id == old_session.id).values(replaced_by_id=new_session.id)
            )
        return new_session

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Delete sessions whose refresh token has expired. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.expires_at < self._now()))
            conn.commit()
        return result.rowcount

    def cleanup_inactive(self, older_than_days: int = 30) -> int:
        """Delete deactivated sessions not updated in the last older_than_days days."""
        cutoff = to_iso(self._clock() - timedelta(days=older_than_days))
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(_sessions).where(and_(_sessions.c.is_active == 0, _sessions.c.updated_at < cutoff))
            )
            conn.commit()
        return result.rowcount

    def count_active(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_sessions.c.id).where(and_(_sessions.c.user_id == user_id, _sessions.c.is_active == 1))
            ).fetchall()
        return len(rows)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _insert_session(conn, user_id, refresh_token_hash, expires_at, user_agent, ip_address, now) -> Session:
    device = parse_user_agent(user_agent)
    values = {
        "user_id": user_id,
        "refresh_token_hash": refresh_token_hash,
        "device_name": device.device_name,
        "device_type": device.device_type,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "expires_at": to_iso(expires_at),
        "last_activity_at": now,
        "is_active": 1,
        "created_at": now,
        "updated_at": now,
    }
    result = conn.execute(_sessions.insert().values(**values))
    values["is_active"] = True
    return Session(id=result.inserted_primary_key[0], **values)


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token_hash=row.refresh_token_hash,
        device_name=row.device_name,
        device_type=row.device_type,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        expires_at=row.expires_at,
        last_activity_at=row.last_activity_at,
        is_active=bool(row.is_active),
        revoked_reason=row.revoked_reason,
        replaced_by_id=row.replaced_by_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
