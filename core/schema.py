"""
core/schema.py -- SQLAlchemy Core schema shared by every Gatehouse store.

All tables live in one MetaData so foreign keys between users, sessions,
roles and permissions resolve, and so create_db_engine() can build the whole
schema in one create_all() call. Stores receive the Engine from the assembly
layer rather than creating their own, which lets multi-table operations (role
creation, refresh rotation) run inside a single transaction.

Timestamps are TEXT columns holding core.clock.to_iso() output.

SQLite specifics:
  PRAGMA foreign_keys=ON is set per connection; without it the ON DELETE
  CASCADE clauses on the association tables are ignored.
  WAL journal mode lets readers proceed during writes.

Layer rule: core/ is the kernel. No imports from api/, auth/, rbac/, or cache/.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-case
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verification_token", String(64)),
    Column("email_verification_expires", String(40)),
    Column("password_reset_token", String(64)),
    Column("password_reset_expires", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    Column("last_login", String(40)),
)

# ---------------------------------------------------------------------------
# Session registry and revocation ledger
# ---------------------------------------------------------------------------

sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("device_name", String(100)),
    Column("device_type", String(20), nullable=False, server_default="unknown"),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("expires_at", String(40), nullable=False),
    Column("last_activity_at", String(40), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("revoked_reason", String(30)),
    Column("replaced_by_id", Integer),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

token_blacklist = Table(
    "token_blacklist",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, index=True),
    Column("expires_at", String(40), nullable=False, index=True),
    Column("reason", String(30), nullable=False),
    Column("created_at", String(40), nullable=False),
)

# ---------------------------------------------------------------------------
# Permission graph
# ---------------------------------------------------------------------------

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),  # "resource:action"
    Column("description", Text, nullable=False, server_default=""),
    Column("resource", String(50), nullable=False, server_default=""),
    Column("action", String(50), nullable=False, server_default=""),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("is_system_role", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine
