"""
auth/service.py -- AuthService: the credential and session workflows.

AuthService is built once at startup (api/main.py lifespan) from explicitly
injected parts: the three stores, the notifier, the signing config, and the
list of strategies. It holds no per-request state, so one instance serves
every worker thread.

Workflows:
  register        create credential -> issue verification token -> notify.
                  A failed notification (or any error after the credential
                  exists) deletes what was created before the error
                  propagates. An unverifiable orphan account never persists.
  verify_email    consume the token; the credential becomes verified.
  login           LocalStrategy -> new access + refresh pair; the refresh
                  row replaces the user's previous one.
  federated_login provider strategy -> same issuance as login.
  refresh         validated refresh row -> new access token.
  logout          delete the refresh row.

Cancellation: a request aborted after replace_for_user() leaves the new
refresh token valid until it expires. No compensation is attempted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlencode

from auth.errors import Forbidden, InternalError, InvalidCredentials, NotFound, Unauthenticated, ValidationError
from auth.models import Credential, FederatedProfile, RefreshToken
from auth.sessions import RefreshTokenStore
from auth.store import CredentialStore, normalize_email, sanitized
from auth.strategies import AuthStrategy, PasswordLogin
from auth.tokens import (
    SignedToken,
    SigningConfig,
    decode_access_token,
    decode_refresh_token,
    issue_access_token,
    issue_refresh_token,
)
from auth.verification import VerificationTokenIssuer
from core.mailer import Notifier, redact_email

logger = logging.getLogger("learndeck.auth.service")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class IssuedSession:
    """Result of a successful login: the credential and both signed tokens."""

    credential: Credential
    access: SignedToken
    refresh: SignedToken


class AuthService:
    def __init__(
        self,
        credentials: CredentialStore,
        verification: VerificationTokenIssuer,
        refresh_tokens: RefreshTokenStore,
        notifier: Notifier,
        signing: SigningConfig,
        strategies: Iterable[AuthStrategy],
        client_url: str = "http://localhost:3000",
    ) -> None:
        self.credentials = credentials
        self.verification = verification
        self.refresh_tokens = refresh_tokens
        self.notifier = notifier
        self.signing = signing
        self.client_url = client_url.rstrip("/")
        self._strategies = {s.name: s for s in strategies}

    def strategy(self, name: str) -> AuthStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise InvalidCredentials(f"Sign-in method {name!r} is not available.") from None

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def verification_url(self, token: str) -> str:
        return f"{self.client_url}/verify-email?{urlencode({'token': token})}"

    def register(self, full_name: str, email: str, password: str, confirm_password: str) -> Credential:
        """Create an unverified credential and email its verification link.

        Raises ValidationError, DuplicateEmail, or InternalError (notification
        or storage failure, after rollback).
        """
        full_name = (full_name or "").strip()
        email = normalize_email(email or "")
        if not full_name or not email or not password:
            raise ValidationError("All fields are required.")
        if not _EMAIL_RE.match(email):
            raise ValidationError("Enter a valid email address.")
        if password != confirm_password:
            raise ValidationError("Enter the same password.")

        credential = self.credentials.create_unverified(full_name, email, password)
        try:
            token = self.verification.issue(credential.id)
            sent = self.notifier.send_verification(credential.email, credential.full_name, self.verification_url(token))
        except Exception as exc:
            logger.exception("Registration failed after credential creation (id=%s)", credential.id)
            self._rollback_registration(credential.id)
            raise InternalError("Registration failed. Please try again.") from exc
        if not sent:
            logger.warning("Verification email to %s not sent; rolling back registration", redact_email(email))
            self._rollback_registration(credential.id)
            raise InternalError("Failed to send verification email.")
        logger.info("Registered credential id=%s, verification pending", credential.id)
        return credential

    def _rollback_registration(self, user_id: int) -> None:
        try:
            self.verification.delete_for_user(user_id)
            self.credentials.delete(user_id)
        except Exception:
            logger.exception("Registration rollback failed for credential id=%s", user_id)
            raise

    def verify_email(self, token: str | None) -> Credential:
        """Redeem a verification token. Returns the now-verified credential."""
        if not token:
            raise ValidationError("Verification token is required.")
        user_id = self.verification.consume(token)
        return self.credentials.find_by_id(user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> IssuedSession:
        if not email or not password:
            raise ValidationError("Please provide email and password.")
        credential = self.strategy("local").resolve(PasswordLogin(email=email, password=password))
        return self._start_session(credential)

    def federated_login(self, provider: str, profile: FederatedProfile) -> IssuedSession:
        credential = self.strategy(provider).resolve(profile)
        return self._start_session(credential)

    def _start_session(self, credential: Credential) -> IssuedSession:
        access = issue_access_token(credential, self.signing)
        refresh = issue_refresh_token(credential, self.signing)
        self.refresh_tokens.replace_for_user(credential.id, refresh.token, refresh.expires_at)
        logger.info("Session started for credential id=%s (%s)", credential.id, credential.provider)
        return IssuedSession(credential=sanitized(credential), access=access, refresh=refresh)

    def authenticate_access_token(self, token: str | None) -> Credential:
        """Resolve an access token to its (password-free) credential.

        Every token failure raises the same Unauthenticated. A valid token for
        a credential that no longer exists raises NotFound.
        """
        claims = decode_access_token(token, self.signing)
        if claims is None:
            raise Unauthenticated()
        return sanitized(self.credentials.find_by_id(claims["id"]))

    def validate_refresh_token(self, token: str) -> RefreshToken:
        """Check a refresh token against the refresh secret and the store.

        Both must agree: a good signature with no live row (revoked, replaced,
        expired) fails, and so does a live row whose claims name another user.
        """
        claims = decode_refresh_token(token, self.signing)
        if claims is None:
            raise Forbidden("Invalid or expired refresh token.")
        row = self.refresh_tokens.find_valid(token)
        if row is None or row.user_id != claims["id"]:
            raise Forbidden("Invalid or expired refresh token.")
        return row

    def refresh(self, row: RefreshToken) -> SignedToken:
        """Mint a new access token for the owner of a validated refresh row.

        A row that outlived its credential is treated like any other bad
        refresh token.
        """
        try:
            credential = self.credentials.find_by_id(row.user_id)
        except NotFound:
            raise Forbidden("Invalid or expired refresh token.") from None
        return issue_access_token(credential, self.signing)

    def logout(self, refresh_token: str | None) -> bool:
        if not refresh_token:
            raise ValidationError("No refresh token provided for logout.")
        return self.refresh_tokens.delete_by_token(refresh_token)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> tuple[int, int]:
        """Sweep expired verification and refresh tokens."""
        removed = self.verification.purge_expired(), self.refresh_tokens.purge_expired()
        if any(removed):
            logger.info("Purged %d verification and %d refresh tokens", *removed)
        return removed
