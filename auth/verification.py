"""
auth/verification.py -- Email verification tokens.

A verification token is 32 random bytes (hex encoded, 64 chars) with a
15-minute lifetime. It is single-use: consume() deletes the row, and the
delete is conditional on the row still being there, so two concurrent
consumers of the same value cannot both succeed. The delete and the
is_verified update share one transaction; neither lands without the other.

Several unconsumed tokens for one user are tolerated (e.g. a registration
retried after rollback); only the one presented matters.

Expired rows are removed three ways: on the read that finds them expired,
by purge_expired() from the periodic sweep, and by registration rollback.
Correctness never depends on the sweep -- every read filters on expires_at.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.errors import InvalidOrExpiredToken
from auth.models import VerificationToken
from auth.schema import iso, utcnow
from auth.schema import verification_tokens as _tokens
from auth.store import CredentialStore

logger = logging.getLogger("learndeck.auth.verification")


class VerificationTokenIssuer:
    """Issues and consumes email-verification tokens."""

    def __init__(
        self,
        engine: Engine,
        credentials: CredentialStore,
        ttl_seconds: int = 15 * 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.credentials = credentials
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, user_id: int) -> str:
        """Create a token for user_id and return its raw value."""
        token = secrets.token_hex(32)
        now = self._clock()
        with self.engine.connect() as conn:
            conn.execute(
                _tokens.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=iso(now + timedelta(seconds=self.ttl_seconds)),
                    created_at=iso(now),
                )
            )
            conn.commit()
        return token

    def consume(self, token: str) -> int:
        """Redeem a token: mark its user verified, delete it, return the user id.

        The token delete and the credential update commit together. If the
        update fails, the delete rolls back and the token stays redeemable.

        Raises InvalidOrExpiredToken when the value is unknown, expired, or was
        redeemed by someone else first. Raises NotFound (from mark_verified)
        when the user behind the token no longer exists.
        """
        row = self.get(token)
        if row is None:
            raise InvalidOrExpiredToken()
        if row.expires_at <= iso(self._clock()):
            with self.engine.begin() as conn:
                conn.execute(_tokens.delete().where(_tokens.c.id == row.id))
            raise InvalidOrExpiredToken()
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.id == row.id))
            if result.rowcount == 0:
                # Another request consumed it between our read and delete.
                raise InvalidOrExpiredToken()
            self.credentials.mark_verified(row.user_id, conn=conn)
        logger.info("Email verified for user id=%s", row.user_id)
        return row.user_id

    def delete_for_user(self, user_id: int) -> int:
        """Remove every token issued to user_id. Used by registration rollback."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        """Number of outstanding tokens for user_id, expired ones included."""
        with self.engine.connect() as conn:
            rows = conn.execute(_tokens.select().where(_tokens.c.user_id == user_id)).fetchall()
        return len(rows)

    def get(self, token: str) -> VerificationToken | None:
        """Return the stored token, or None. Expiry is not applied."""
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token == token)).fetchone()
        if row is None:
            return None
        return VerificationToken(
            id=row.id,
            user_id=row.user_id,
            token=row.token,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )

    def purge_expired(self) -> int:
        """Delete all expired tokens. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at <= iso(self._clock())))
            conn.commit()
        return result.rowcount
