"""
auth/blacklist.py -- Revocation ledger for access tokens.

An access token stays cryptographically valid until its exp claim. Logging
out (or any other early revocation) records HMAC-SHA256(SECRET_KEY, token) in
token_blacklist until that exp, and every authorization check consults the
ledger.

Concurrency:
  add() is idempotent. Two concurrent revocations of the same token race on
  the UNIQUE(token_hash) index; the loser's IntegrityError means "already
  revoked", which is the outcome it wanted.

Caching:
  An optional RevocationCache holds positive entries only (write-through on
  add). is_revoked() answers cache hits directly and sends every miss to the
  store, so there is no window in which a revoked token is accepted.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import RevokedToken
from auth.tokens import hash_token
from cache.store import RevocationCache
from core.clock import Clock, to_iso, utc_now
from core.schema import token_blacklist as _blacklist

logger = logging.getLogger("gatehouse.auth")


class RevocationLedger:
    """Repository for blacklisted access tokens."""

    def __init__(
        self,
        engine: Engine,
        secret_key: str,
        clock: Clock = utc_now,
        cache: RevocationCache | None = None,
    ) -> None:
        self.engine = engine
        self._secret_key = secret_key
        self._clock = clock
        self.cache = cache

    def _hash(self, token: str) -> str:
        return hash_token(token, self._secret_key)

    def add(self, token: str, user_id: int | None, expires_at: datetime, reason: str) -> None:
        """Blacklist token until expires_at. Re-adding a revoked token is a no-op."""
        token_hash = self._hash(token)
        expires_iso = to_iso(expires_at)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _blacklist.insert().values(
                        token_hash=token_hash,
                        user_id=user_id,
                        expires_at=expires_iso,
                        reason=reason,
                        created_at=to_iso(self._clock()),
                    )
                )
                conn.commit()
        except IntegrityError:
            logger.debug("Token already revoked (user_id=%s)", user_id)
        if self.cache is not None:
            self.cache.add(token_hash, expires_iso)

    def is_revoked(self, token: str) -> bool:
        """Return True if token is blacklisted. O(1) via the UNIQUE index."""
        token_hash = self._hash(token)
        if self.cache is not None and self.cache.contains(token_hash, to_iso(self._clock())):
            return True
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_blacklist.c.expires_at).where(_blacklist.c.token_hash == token_hash)
            ).fetchone()
        if row is None:
            return False
        if self.cache is not None:
            self.cache.add(token_hash, row.expires_at)
        return True

    def get(self, token: str) -> RevokedToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_blacklist.select().where(_blacklist.c.token_hash == self._hash(token))).fetchone()
        return _row_to_revoked(row) if row is not None else None

    def sweep(self, older_than: datetime | None = None) -> int:
        """Delete entries whose expiry is before older_than (default: now).

        Those tokens fail the exp check on their own, so the entries are dead
        weight. Returns the number of rows removed.
        """
        cutoff = to_iso(older_than or self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(delete(_blacklist).where(_blacklist.c.expires_at < cutoff))
            conn.commit()
        if self.cache is not None:
            self.cache.purge_expired(cutoff)
        if result.rowcount:
            logger.info("Swept %d expired blacklist entries", result.rowcount)
        return result.rowcount


def _row_to_revoked(row) -> RevokedToken:
    return RevokedToken(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=row.expires_at,
        reason=row.reason,
        created_at=row.created_at,
    )
