"""
api/routes/v1/auth.py -- Registration, session, and profile REST endpoints.

Routes (mounted under /api/v1/users):
  POST /register                -- create unverified account, send verification email
  POST /verify-email?token=     -- redeem verification token
  POST /login                   -- password login; sets accessToken + refreshToken cookies
  POST /refresh-token           -- new access token from the refresh cookie
  POST /logout                  -- revoke refresh token, clear cookies (requires auth)
  GET  /profile                 -- current credential without password (requires auth)
  GET  /providers               -- enabled OAuth providers (public)
  GET  /auth/{provider}         -- redirect to the OAuth provider
  GET  /auth/{provider}/callback -- OAuth callback; sets cookies, redirects to CLIENT_URL

Password and token routes are plain `def` handlers: FastAPI runs them in its
threadpool, so bcrypt and JWT work never blocks the event loop. The async OAuth
callback hands its store work to run_in_threadpool for the same reason.

Errors are raised as auth.errors.AuthError subclasses; api/main.py maps them
to status codes and the error envelope.

Security:
  [C1] LocalStrategy provides timing equalization for unknown emails.
  [M5] Cache-Control: no-store on every response that sets session cookies.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import (
    ApiResponse,
    LoginRequest,
    OAuthProviderInfo,
    Profile,
    RegisterRequest,
    UserSummary,
)
from auth.dependencies import get_auth_service, get_current_credential, verify_refresh_request
from auth.errors import AuthError, UnverifiedAccount
from auth.models import Credential, RefreshToken
from auth.oauth import get_enabled_providers
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_session_cookies, set_access_cookie, set_session_cookies
from core.config import get_settings

logger = logging.getLogger("learndeck.api.auth")

# Auth policy:
# - POST /register, /verify-email, /login:   public
# - POST /refresh-token:                     refreshToken cookie (verify_refresh_request)
# - POST /logout, GET /profile:              accessToken cookie (get_current_credential)
# - GET  /providers, /auth/{provider}[...]:  public
router = APIRouter()


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register", response_model=ApiResponse)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> ApiResponse:
    """Create an unverified account and email a verification link.

    If the email cannot be sent, the account is rolled back and the response
    is 500 -- the user can simply register again.
    """
    service.register(body.full_name, body.email, body.password, body.confirm_password)
    return ApiResponse(message="Verification email sent successfully.")


@router.post("/verify-email", response_model=ApiResponse)
def verify_email(token: str | None = None, service: AuthService = Depends(get_auth_service)) -> ApiResponse:
    service.verify_email(token)
    return ApiResponse(message="Email verified successfully.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/login", response_model=ApiResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password; set both session cookies.

    A new login replaces the user's previous refresh token, so any session
    started elsewhere can no longer refresh.
    """
    session = service.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=ApiResponse(
            message="Login successful.",
            data={"user": UserSummary.from_credential(session.credential).model_dump(by_alias=True)},
        ).model_dump(),
    )
    set_session_cookies(resp, session.access, session.refresh, secure=get_settings().secure_cookies)
    return _no_store(resp)


@router.post("/refresh-token", response_model=ApiResponse)
def refresh_token(
    row: RefreshToken = Depends(verify_refresh_request),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Issue a new access token cookie. No password needed while the refresh token lives."""
    access = service.refresh(row)
    resp = JSONResponse(content=ApiResponse(message="Access token refreshed.").model_dump())
    set_access_cookie(resp, access, secure=get_settings().secure_cookies)
    return _no_store(resp)


@router.post("/logout", response_model=ApiResponse)
def logout(
    request: Request,
    credential: Credential = Depends(get_current_credential),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the stored refresh token and clear both cookies."""
    service.logout(request.cookies.get(REFRESH_COOKIE))
    logger.info("Logout for credential id=%s", credential.id)
    resp = JSONResponse(content=ApiResponse(message="Logout successful.").model_dump())
    clear_session_cookies(resp, secure=get_settings().secure_cookies)
    return _no_store(resp)


@router.get("/profile", response_model=ApiResponse)
def profile(credential: Credential = Depends(get_current_credential)) -> ApiResponse:
    return ApiResponse(
        message="User profile retrieved successfully.",
        data=Profile.from_credential(credential).model_dump(by_alias=True),
    )


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so the client can render buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


def _login_error(code: str) -> RedirectResponse:
    base = get_settings().client_url.rstrip("/")
    return RedirectResponse(f"{base}/login?{urlencode({'error': code})}", status_code=302)


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list first, so a
    crafted name cannot produce a redirect to an arbitrary URL.
    """
    adapter = request.app.state.oauth
    if not adapter.is_enabled(provider):
        return _login_error("oauth_failed")
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await adapter.authorize_redirect(request, provider, redirect_uri)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish the OAuth flow and start a session.

    Flow:
      1. Exchange the code and fetch a verified email (OAuthFederationAdapter).
      2. Find or create the credential (FederatedStrategy), in the threadpool.
      3. Replace the refresh row, set both cookies, redirect to CLIENT_URL.
    Failures redirect to CLIENT_URL/login?error=<code>.
    """
    adapter = request.app.state.oauth
    service: AuthService = request.app.state.auth_service
    if not adapter.is_enabled(provider):
        return _login_error("oauth_failed")
    try:
        profile = await adapter.resolve(request, provider)
        session = await run_in_threadpool(service.federated_login, provider, profile)
    except UnverifiedAccount:
        return _login_error(UnverifiedAccount.code)
    except AuthError as exc:
        logger.warning("OAuth login via %r rejected: %s", provider, exc.code)
        return _login_error("oauth_failed")

    resp = RedirectResponse(get_settings().client_url, status_code=302)
    set_session_cookies(resp, session.access, session.refresh, secure=get_settings().secure_cookies)
    return _no_store(resp)
