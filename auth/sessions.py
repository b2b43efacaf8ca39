"""
auth/sessions.py -- Server-side refresh token rows (single active session).

Each user has at most one refresh token row. A login replaces the previous
row, which revokes the refresh token the earlier login handed out.

Atomicity:
  replace_for_user() is a single INSERT ... ON CONFLICT (user_id) DO UPDATE
  statement on SQLite and PostgreSQL. Two concurrent logins for the same user
  therefore serialize on the UNIQUE(user_id) index and exactly one row
  survives -- never zero, never two. Other dialects fall back to delete +
  insert inside one transaction, with the same UNIQUE constraint as a backstop.

Expiry:
  find_valid() applies expires_at > now in the WHERE clause, so an expired
  row that the sweep has not yet removed is treated as absent.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.models import RefreshToken
from auth.schema import iso, utcnow
from auth.schema import refresh_tokens as _refresh

logger = logging.getLogger("learndeck.auth.sessions")

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class RefreshTokenStore:
    """Repository for RefreshToken rows."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def replace_for_user(self, user_id: int, token: str, expires_at: datetime) -> None:
        """Atomically make (token, expires_at) the only refresh row for user_id."""
        values = {
            "user_id": user_id,
            "token": token,
            "expires_at": iso(expires_at),
            "created_at": iso(self._clock()),
        }
        insert = _UPSERT_DIALECTS.get(self.engine.dialect.name)
        if insert is not None:
            stmt = insert(_refresh).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[_refresh.c.user_id],
                set_={
                    "token": stmt.excluded.token,
                    "expires_at": stmt.excluded.expires_at,
                    "created_at": stmt.excluded.created_at,
                },
            )
            with self.engine.begin() as conn:
                conn.execute(stmt)
            return
        with self.engine.begin() as conn:
            conn.execute(_refresh.delete().where(_refresh.c.user_id == user_id))
            conn.execute(_refresh.insert().values(**values))

    def find_valid(self, token: str) -> RefreshToken | None:
        """Return the row for token if it exists and has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh.select().where((_refresh.c.token == token) & (_refresh.c.expires_at > iso(self._clock())))
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def find_for_user(self, user_id: int) -> RefreshToken | None:
        """Return the user's row regardless of expiry, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh.select().where(_refresh.c.user_id == user_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_refresh).where(_refresh.c.user_id == user_id))
            return result.scalar() or 0

    def delete_by_token(self, token: str) -> bool:
        """Revoke one refresh token. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh.delete().where(_refresh.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_by_user(self, user_id: int) -> bool:
        """Revoke whatever session user_id currently has."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh.delete().where(_refresh.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired rows. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh.delete().where(_refresh.c.expires_at <= iso(self._clock())))
            conn.commit()
        return result.rowcount


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
