"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_credential is the mapper. Route and service code never touches SQL
directly.

Ownership: CredentialStore is the only writer of the credentials table. The
verification and refresh token stores reference credentials by id only.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced twice: a lookup before insert gives the
  friendly DuplicateEmail path, and the UNIQUE constraint catches the race
  where two registrations pass the lookup together (IntegrityError is mapped
  to DuplicateEmail).

  check_password() always runs bcrypt, against a dummy hash when the
  credential has no local password, so response time does not reveal which
  kind of account an email belongs to [C1].

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from sqlalchemy import func, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, InvalidCredentials, NotFound, PasswordMismatch, UnverifiedAccount
from auth.models import PROVIDERS, Credential
from auth.schema import credentials as _credentials
from auth.schema import iso, utcnow
from auth.tokens import hash_password, verify_password

logger = logging.getLogger("learndeck.auth.store")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    """Repository for Credential entities.

    Usage:
        store = CredentialStore(make_engine())
        cred = store.create_unverified("Alice", "alice@x.com", "P@ss1")
        store.mark_verified(cred.id)
        store.check_password(store.find_by_email("alice@x.com"), "P@ss1")
    """

    def __init__(self, engine: Engine, bcrypt_rounds: int = 10) -> None:
        self.engine = engine
        self.bcrypt_rounds = bcrypt_rounds
        # Same cost factor as real hashes so the dummy check takes as long [C1].
        self._dummy_hash = hash_password("learndeck_timing_dummy", bcrypt_rounds)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_unverified(self, full_name: str, email: str, raw_password: str) -> Credential:
        """Persist a new Unverified local credential. The raw password is never stored.

        Raises DuplicateEmail if the email is already registered.
        """
        email = normalize_email(email)
        if self._get_by_email(email) is not None:
            raise DuplicateEmail()
        password_hash = hash_password(raw_password, self.bcrypt_rounds)
        return self._insert(
            full_name=full_name,
            email=email,
            password_hash=password_hash,
            is_verified=False,
            provider="local",
            provider_id=None,
        )

    def mark_verified(self, user_id: int, conn: Connection | None = None) -> None:
        """Set is_verified. Idempotent; there is no reverse transition.

        With conn, the update joins the caller's transaction and is committed
        (or rolled back) by the caller.

        Raises NotFound if the credential no longer exists.
        """
        stmt = _credentials.update().where(_credentials.c.id == user_id).values(is_verified=1, updated_at=iso(utcnow()))
        if conn is None:
            with self.engine.begin() as own:
                result = own.execute(stmt)
        else:
            result = conn.execute(stmt)
        if result.rowcount == 0:
            raise NotFound()

    def find_or_create_federated(
        self,
        email: str,
        display_name: str,
        provider: str,
        provider_id: str,
    ) -> Credential:
        """Return the credential for a provider-confirmed email, creating it if needed.

        Linking policy for an email that already exists:
          - verified credential (any provider): returned as-is. The provider
            has confirmed ownership of the same address, so it is the same person.
          - unverified local credential: UnverifiedAccount. Linking would hand
            a verified account to whoever registered the address first with a
            password they control.

        New credentials are created verified, with no password.
        """
        if provider not in PROVIDERS or provider == "local":
            raise InvalidCredentials(f"Unsupported identity provider: {provider}")
        email = normalize_email(email)
        existing = self._get_by_email(email)
        if existing is None:
            try:
                created = self._insert(
                    full_name=display_name or email.split("@", 1)[0],
                    email=email,
                    password_hash=None,
                    is_verified=True,
                    provider=provider,
                    provider_id=provider_id,
                )
            except DuplicateEmail:
                # A concurrent first login for the same email won the insert.
                existing = self._get_by_email(email)
                if existing is None:
                    raise
            else:
                logger.info("New %s credential created (id=%s)", provider, created.id)
                return created
        if not existing.is_verified:
            logger.warning("%s login refused: email belongs to an unverified local account", provider)
            raise UnverifiedAccount()
        if existing.provider != provider:
            logger.info("%s login linked to existing %s credential (id=%s)", provider, existing.provider, existing.id)
        return existing

    def delete(self, user_id: int) -> bool:
        """Hard delete. Only the registration rollback path calls this."""
        with self.engine.connect() as conn:
            result = conn.execute(_credentials.delete().where(_credentials.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def _insert(self, **fields) -> Credential:
        now = iso(utcnow())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _credentials.insert().values(
                        **{**fields, "is_verified": 1 if fields["is_verified"] else 0},
                        role="user",
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        return self.find_by_id(result.inserted_primary_key[0])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Credential:
        """Look up by email (case-insensitive). Raises NotFound."""
        cred = self._get_by_email(normalize_email(email))
        if cred is None:
            raise NotFound()
        return cred

    def find_by_id(self, user_id: int) -> Credential:
        """Look up by primary key. Raises NotFound."""
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == user_id)).fetchone()
        if row is None:
            raise NotFound()
        return _row_to_credential(row)

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_credentials)).scalar() or 0

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def _get_by_email(self, email: str) -> Credential | None:
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.email == email)).fetchone()
        return _row_to_credential(row) if row is not None else None

    # ------------------------------------------------------------------
    # Password check
    # ------------------------------------------------------------------

    def check_password(self, credential: Credential, raw_password: str) -> None:
        """Verify raw_password against the stored hash.

        Raises InvalidCredentials when the credential has no local password
        (federated-only account), PasswordMismatch when the hash does not match.
        """
        if credential.password_hash is None:
            verify_password(raw_password, self._dummy_hash)  # equalize timing [C1]
            raise InvalidCredentials()
        if not verify_password(raw_password, credential.password_hash):
            raise PasswordMismatch()

    def dummy_check(self, raw_password: str) -> None:
        """Burn one bcrypt comparison for an unknown email [C1]."""
        verify_password(raw_password, self._dummy_hash)

    def close(self) -> None:
        self.engine.dispose()


def sanitized(credential: Credential) -> Credential:
    """Copy of the credential without its password hash, for outward use."""
    return replace(credential, password_hash=None)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        full_name=row.full_name,
        email=row.email,
        password_hash=row.password_hash,
        is_verified=bool(row.is_verified),
        provider=row.provider,
        provider_id=row.provider_id,
        role=row.role,
        image=row.image,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
