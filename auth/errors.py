"""
auth/errors.py -- Domain error kinds raised by the auth core.

Every failure the auth core reports to a caller is one of these classes. Each
carries a stable machine code and a user-safe message. Internal detail (SQL
errors, signing errors, provider responses) is logged where it happens and
never placed in the message.

The HTTP status for each kind is decided by api/main.py, not here -- the auth
package stays free of transport concerns.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses override code and default_message."""

    code = "auth_error"
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    default_message = "Invalid or missing fields."


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    default_message = "User with this email already exists."


class PasswordMismatch(AuthError):
    code = "password_mismatch"
    default_message = "Incorrect password."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class UnverifiedAccount(AuthError):
    code = "unverified_account"
    default_message = "Please verify your email before logging in."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_token"
    default_message = "Token is invalid or has expired."


class Unauthenticated(AuthError):
    """Single outward signal for every access-token failure.

    Missing, malformed, badly signed and expired tokens all raise this with
    the same message so the caller cannot tell them apart.
    """

    code = "unauthenticated"
    default_message = "Authentication required."


class Forbidden(AuthError):
    code = "forbidden"
    default_message = "Access denied."


class NotFound(AuthError):
    code = "not_found"
    default_message = "User not found."


class InternalError(AuthError):
    code = "internal_error"
    default_message = "An unexpected error occurred."
