"""
core/mailer.py -- Outbound verification email.

The auth core only needs one thing from email delivery: send the verification
link and say whether it worked. Notifier is that boundary. The core branches
on the boolean and nothing else; delivery errors are logged here and never
raised.

ResendMailer posts to the Resend HTTP API. With no RESEND_API_KEY and
dev_mode on (DEBUG=true) the link is logged and the send counts as a success,
so local registration works without an email account. Outside dev mode a
missing key is a delivery failure; the link is never logged.

Recipient addresses are redacted in logs.
"""

from __future__ import annotations

import html
import logging
from typing import Protocol

import requests

logger = logging.getLogger("learndeck.mailer")

RESEND_API = "https://api.resend.com/emails"


class Notifier(Protocol):
    def send_verification(self, recipient_email: str, display_name: str, verification_url: str) -> bool: ...


def redact_email(email: str) -> str:
    """alice@example.com -> al***@example.com"""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _verification_html(display_name: str, verification_url: str) -> str:
    name = html.escape(display_name)
    url = html.escape(verification_url, quote=True)
    return (
        f"<p>Hello {name},</p>"
        "<p>Please verify your email by clicking the link below:</p>"
        f'<p><a href="{url}" style="color: #007bff; text-decoration: none;">Verify Email</a></p>'
        "<p>If you didn't request this, you can safely ignore this email.</p>"
    )


class ResendMailer:
    def __init__(
        self,
        api_key: str = "",
        sender: str = "LearnDeck <onboarding@resend.dev>",
        timeout: int = 10,
        dev_mode: bool = False,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.dev_mode = dev_mode
        # One session per mailer for connection pooling; Resend is a single host.
        self._session = requests.Session()
        self._session.max_redirects = 3

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send_verification(self, recipient_email: str, display_name: str, verification_url: str) -> bool:
        """Send the verification email. Returns True on accepted delivery."""
        if not self.is_configured:
            if self.dev_mode:
                logger.info("Email dev mode: verification link for %s -> %s", redact_email(recipient_email), verification_url)
                return True
            logger.error("Verification email to %s not sent: RESEND_API_KEY is not set", redact_email(recipient_email))
            return False
        try:
            resp = self._session.post(
                RESEND_API,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [recipient_email],
                    "subject": "Verify Your Email",
                    "html": _verification_html(display_name, verification_url),
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Verification email to %s failed: %s", redact_email(recipient_email), e)
            return False
        logger.info("Verification email sent to %s", redact_email(recipient_email))
        return True

    def close(self) -> None:
        self._session.close()
