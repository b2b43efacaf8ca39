"""
auth/schema.py -- SQLAlchemy Core schema and engine factory for the auth core.

Three record kinds live here: credentials, verification_tokens and
refresh_tokens. Each store module owns the queries for one table; this module
only owns their shape so all three share one MetaData and one engine.

Timestamps are ISO 8601 strings in UTC with a fixed microsecond precision
(see iso()). Fixed width means a lexical comparison in SQL orders the same as
a chronological one, which the expiry filters rely on.

DB path default: auth/learndeck_auth.db.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'learndeck_auth.db'}"

metadata = MetaData()

credentials = Table(
    "credentials",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("full_name", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text),  # NULL for federated credentials
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("provider", String(20), nullable=False, server_default="local"),
    Column("provider_id", Text),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("image", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # UNIQUE(user_id) is the single-active-session invariant at the DB level.
    Column("user_id", Integer, nullable=False, unique=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed while a write is in progress. The busy timeout
    makes a second concurrent writer wait for the lock instead of failing
    immediately. Set per-connection because SQLite PRAGMAs are not inherited
    by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA busy_timeout=5000")
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = "") -> Engine:
    """Create the shared engine and make sure all auth tables exist."""
    db_url = db_url or DEFAULT_DB_URL
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(moment: datetime) -> str:
    """Serialize a datetime as fixed-width ISO 8601 UTC."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
