"""
auth/tokens.py -- JWT session tokens, password hashing, and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, two secrets:
       access  -- claims {id, email, role, iat, exp}, ACCESS_TOKEN_SECRET,
                  short lived (default 15 min), never stored server-side.
       refresh -- claims {id, jti, iat, exp}, REFRESH_TOKEN_SECRET,
                  long lived (default 7 days), persisted by RefreshTokenStore.
       An access token never verifies with the refresh secret and vice versa.
       Decoding returns None on any failure -- the caller turns that into a
       single Unauthenticated / Forbidden signal.

       The jti claim makes every refresh token unique, so two logins within
       the same second still produce different values and the older one is
       revoked when the newer row replaces it.

  Minting functions take the Credential value and an explicit SigningConfig.
  They hold no state and read no globals; `now` is injectable for tests.

  Passwords: bcrypt used directly (no passlib wrapper). The cost factor is
       configurable via BCRYPT_ROUNDS. Passwords over 72 bytes are rejected at
       the API layer because bcrypt refuses them.

Layer rule: no imports from api/. Import from core/ is not needed here --
the SigningConfig is built by the caller from Settings.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, NamedTuple

import bcrypt
from jose import JWTError, jwt

if TYPE_CHECKING:
    from auth.models import Credential
    from core.config import Settings

logger = logging.getLogger("learndeck.auth")

ALGORITHM = "HS256"
ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


# ---------------------------------------------------------------------------
# Signing configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningConfig:
    """Everything needed to mint and verify session tokens."""

    access_secret: str
    refresh_secret: str
    access_ttl_seconds: int = 15 * 60
    refresh_ttl_seconds: int = 7 * 24 * 3600
    algorithm: str = ALGORITHM

    @classmethod
    def from_settings(cls, settings: Settings) -> SigningConfig:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )


class SignedToken(NamedTuple):
    token: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 10) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash or an
    over-long password counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Password check failed on a malformed hash or oversized input")
        return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_access_token(credential: Credential, signing: SigningConfig, now: datetime | None = None) -> SignedToken:
    """Mint a short-lived access token carrying identity and role."""
    issued = now or datetime.now(timezone.utc)
    expires = issued + timedelta(seconds=signing.access_ttl_seconds)
    payload = {
        "id": credential.id,
        "email": credential.email,
        "role": credential.role,
        "iat": issued,
        "exp": expires,
    }
    return SignedToken(jwt.encode(payload, signing.access_secret, algorithm=signing.algorithm), expires)


def issue_refresh_token(credential: Credential, signing: SigningConfig, now: datetime | None = None) -> SignedToken:
    """Mint a long-lived refresh token. The caller persists the returned value."""
    issued = now or datetime.now(timezone.utc)
    expires = issued + timedelta(seconds=signing.refresh_ttl_seconds)
    payload = {
        "id": credential.id,
        "jti": secrets.token_hex(16),
        "iat": issued,
        "exp": expires,
    }
    return SignedToken(jwt.encode(payload, signing.refresh_secret, algorithm=signing.algorithm), expires)


def _decode(token: str | None, secret: str, algorithm: str, required: tuple[str, ...]) -> dict | None:
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        return None
    if any(claim not in payload for claim in required):
        return None
    return payload


def decode_access_token(token: str | None, signing: SigningConfig) -> dict | None:
    """Verify signature and expiry with the access secret. None on any failure."""
    return _decode(token, signing.access_secret, signing.algorithm, ("id", "email", "role"))


def decode_refresh_token(token: str | None, signing: SigningConfig) -> dict | None:
    """Verify signature and expiry with the refresh secret. None on any failure."""
    return _decode(token, signing.refresh_secret, signing.algorithm, ("id",))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _max_age(expires_at: datetime) -> int:
    return max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))


def _set_cookie(response, name: str, signed: SignedToken, secure: bool) -> None:
    """Write one token cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="none": the front end is served from a different origin.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        name,
        value=signed.token,
        httponly=True,
        samesite="none",
        secure=secure,
        path="/",
        max_age=_max_age(signed.expires_at),
    )


def set_access_cookie(response, access: SignedToken, secure: bool = False) -> None:
    _set_cookie(response, ACCESS_COOKIE, access, secure)


def set_session_cookies(response, access: SignedToken, refresh: SignedToken, secure: bool = False) -> None:
    """Write both the access and the refresh cookie on a login response."""
    _set_cookie(response, ACCESS_COOKIE, access, secure)
    _set_cookie(response, REFRESH_COOKIE, refresh, secure)


def clear_session_cookies(response, secure: bool = False) -> None:
    """Expire both cookies. Attributes must match the ones used to set them."""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=secure, httponly=True, samesite="none")
