"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the service
do the work; these only carry shape.

Credential is frozen: token minting and the password check take it as an
immutable value, never a live record with methods attached.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

PROVIDERS = ("local", "google", "github")
ROLES = ("admin", "teacher", "student", "user", "writer")


@dataclass(frozen=True)
class Credential:
    """The durable identity record for a person.

    email is stored lower-cased and is globally unique.

    password_hash is present iff provider == "local". Federated credentials
    (google, github) have no local password and are created already verified.

    is_verified only ever goes False -> True (see VerificationTokenIssuer.consume).
    """

    full_name: str
    email: str
    id: int | None = None
    password_hash: str | None = None  # None = federated-only credential
    is_verified: bool = False
    provider: str = "local"  # "local", "google", "github"
    provider_id: str | None = None  # provider's stable user ID
    role: str = "user"
    image: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class VerificationToken:
    """Single-use, time-boxed proof that the registrant controls the email.

    The row is deleted when consumed -- there is no "used" flag.
    """

    user_id: int
    token: str  # 32 random bytes, hex encoded
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class RefreshToken:
    """Server-held handle backing the long-lived refresh cookie.

    At most one row exists per user (single-active-session policy). token is
    the signed JWT itself, so the server holds the canonical copy and can
    revoke it by deleting the row.
    """

    user_id: int
    token: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class FederatedProfile:
    """Identity asserted by an OAuth provider after a successful grant exchange."""

    email: str
    display_name: str
    provider_id: str  # provider's stable subject id
