"""
auth/store.py -- SQLAlchemy Core persistence for user credentials.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are normalized to lower-case on every write and lookup, so the
  UNIQUE(email) constraint is effectively case-insensitive.

Layer rule: no imports from api/, rbac/, or cache/. Imports from core/ are
allowed (core/ is the kernel).
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.models import User
from core.clock import Clock, to_iso, utc_now
from core.schema import users as _users

# Columns a caller may change through update_user(). id, email and the
# audit timestamps are owned by the store.
_MUTABLE_FIELDS = frozenset(
    {
        "hashed_password",
        "first_name",
        "last_name",
        "is_active",
        "is_email_verified",
        "email_verification_token",
        "email_verification_expires",
        "password_reset_token",
        "password_reset_expires",
    }
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(engine)
        uid = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("A@example.com")
    """

    def __init__(self, engine: Engine, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a conflict; a pre-check alone cannot close the
        race between two concurrent registrations.
        """
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    is_active=1 if user.is_active else 0,
                    is_email_verified=1 if user.is_email_verified else 0,
                    email_verification_token=user.email_verification_token,
                    email_verification_expires=user.email_verification_expires,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_verification_token(self, token: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email_verification_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.password_reset_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Booleans are converted to 0/1 for SQLite. Unknown field names raise
        ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        for flag in ("is_active", "is_email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=self._now(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login. Called on every successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=self._now()))
            conn.commit()

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Sessions and role assignments cascade."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        email_verification_token=row.email_verification_token,
        email_verification_expires=row.email_verification_expires,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
