"""
auth/oauth.py -- Authlib OAuth provider registry and federation adapter.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

OAuthFederationAdapter turns an authorization grant into a FederatedProfile
{email, display_name, provider_id}. It does not touch the database -- the
matching FederatedStrategy maps the profile onto a local Credential.

Security notes:
  [H1] Email verification is mandatory. fetch_profile() raises
       InvalidCredentials if the provider yields no email or does not confirm
       it is verified. An unverified email from GitHub could belong to an
       attacker who added a victim's address without confirming it.

  OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  github -- Authorization code flow; static endpoints.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.integrations.starlette_client import OAuth, OAuthError

from auth.errors import InvalidCredentials
from auth.models import FederatedProfile
from core.config import get_settings

logger = logging.getLogger("learndeck.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def fetch_profile(client, provider: str, token: dict) -> FederatedProfile:
    """Normalize a provider token response into a FederatedProfile.

    Raises:
        InvalidCredentials: no verified email, missing subject, or unknown provider.
    """
    if provider == "google":
        return _google_profile(token)
    if provider == "github":
        return await _github_profile(client, token)
    raise InvalidCredentials(f"Unknown OAuth provider: {provider}")


def _google_profile(token: dict) -> FederatedProfile:
    """Read email, name and sub from the id_token userinfo.

    The email claim is only accepted when email_verified is True. Some
    providers omit email_verified entirely -- that counts as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise InvalidCredentials("Google account did not return a profile.")
    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise InvalidCredentials("Google account does not have an email.")
    if not userinfo.get("email_verified", False):
        raise InvalidCredentials("Google account email is not verified.")
    return FederatedProfile(email=email, display_name=userinfo.get("name") or "", provider_id=str(subject_id))


async def _github_profile(client, token: dict) -> FederatedProfile:
    """Read the profile and the primary verified email from the GitHub API.

    GitHub does not include the email in the access token. Two API calls are
    required: GET /user for the numeric id and name, GET /user/emails for the
    address where both primary and verified are true.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break
    if not email:
        raise InvalidCredentials("GitHub account has no primary verified email.")

    return FederatedProfile(
        email=email,
        display_name=profile.get("name") or profile.get("login") or "",
        provider_id=str(profile["id"]),
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class OAuthFederationAdapter:
    """Exchanges an external authorization grant for a FederatedProfile."""

    def __init__(self, registry: OAuth = oauth) -> None:
        self.registry = registry

    def is_enabled(self, provider: str) -> bool:
        return provider in {p["name"] for p in get_enabled_providers()}

    def _client(self, provider: str):
        client = self.registry.create_client(provider) if self.is_enabled(provider) else None
        if client is None:
            raise InvalidCredentials(f"OAuth provider {provider!r} is not enabled.")
        return client

    async def authorize_redirect(self, request, provider: str, redirect_uri: str):
        """Return the redirect response that sends the browser to the provider."""
        return await self._client(provider).authorize_redirect(request, redirect_uri)

    async def resolve(self, request, provider: str) -> FederatedProfile:
        """Complete the code exchange on the callback request and fetch the profile."""
        client = self._client(provider)
        try:
            token = await client.authorize_access_token(request)
        except OAuthError as exc:
            logger.warning("OAuth token exchange failed for %r: %s", provider, exc.error)
            raise InvalidCredentials("OAuth authorization failed.") from exc
        try:
            return await fetch_profile(client, provider, token)
        except httpx.HTTPError as exc:
            logger.warning("OAuth profile fetch failed for %r: %s", provider, exc)
            raise InvalidCredentials("OAuth authorization failed.") from exc
