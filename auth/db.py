"""
auth/db.py -- SQLAlchemy Core schema and engine setup for the auth tables.

Four relations: users, roles, user_roles (junction) and sessions. The stores
in auth/users.py, auth/roles.py and auth/sessions.py share one Engine built
by create_db_engine(); none of them issues DDL.

SQLite is the default for local runs and tests; the hosted Postgres backend
is a connection string change (postgresql+psycopg://...).

Constraints the auth lifecycle relies on:
  users.email UNIQUE               -- EMAIL_ALREADY_EXISTS
  roles.name UNIQUE                -- ROLE_ALREADY_EXISTS
  user_roles (user_id, role_id)    -- ROLE_ALREADY_ASSIGNED
  sessions.refresh_token UNIQUE    -- one live credential per token value
  sessions.user_id ON DELETE CASCADE

Timestamps are ISO 8601 UTC text with fixed microsecond precision, so string
comparison in SQL matches chronological order (used by the expiry sweep).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger("turnstile.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("password_hash", Text, nullable=False),
    Column("name", String(100)),
    Column("is_active", Boolean, nullable=False, default=False),
    Column("is_locked", Boolean, nullable=False, default=False),
    Column("failed_attempts", Integer, nullable=False, default=0),
    Column("created_at", String(32), nullable=False),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),  # always lowercase
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False, index=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token", String(128), nullable=False, unique=True),
    Column("user_agent", String(50)),
    Column("ip", String(45)),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("last_activity_at", String(32)),
    Column("is_active", Boolean, nullable=False, default=True, index=True),
)


# ---------------------------------------------------------------------------
# SQLite connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite;
    without it the sessions cascade and the USER_HAS_DEPENDENCIES check
    would silently not happen.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def create_db_engine(db_url: str) -> Engine:
    """Create the engine and any missing tables.

    Usage:
        engine = create_db_engine("sqlite:///:memory:")
        users = UserStore(engine)
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=not db_url.startswith("sqlite"))
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    logger.info("Auth schema ready (%s)", engine.url.render_as_string(hide_password=True))
    return engine


def ping(engine: Engine) -> None:
    """Run a trivial query. Raises SQLAlchemyError if the database is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
