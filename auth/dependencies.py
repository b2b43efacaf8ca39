"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The chain is explicit dependency composition, in this order:

  cookie  -> get_current_credential  (access token from the accessToken cookie)
          -> require_role(...)       (role gate, wraps the above)

  cookie  -> verify_refresh_request  (refresh gate, /refresh-token only)

Tokens are read from cookies only. There is no Authorization header path in
this cookie-session design.

Access-token failures of every kind (missing, malformed, bad signature,
expired) raise the same Unauthenticated. The caller never learns which one
happened.

Layer rule: auth/dependencies.py may import from fastapi (Request/Depends)
because it is part of the FastAPI dependency injection system. It does not
import from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthenticated
from auth.models import ROLES, Credential, RefreshToken
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_credential(request: Request) -> Credential:
    """Require a valid access token cookie. Attaches the credential to request.state.

    Raises Unauthenticated (401) on any token failure, NotFound (404) when the
    token is valid but its credential has been deleted.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(credential: Credential = Depends(get_current_credential)): ...
    """
    service = get_auth_service(request)
    credential = service.authenticate_access_token(request.cookies.get(ACCESS_COOKIE))
    request.state.credential = credential
    return credential


def require_role(*roles: str) -> Callable[..., Credential]:
    """Dependency factory: authenticated AND one of the given roles, else Forbidden (403)."""
    allowed = frozenset(roles)
    unknown = allowed - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown role(s): {sorted(unknown)}")

    def _check(credential: Credential = Depends(get_current_credential)) -> Credential:
        if credential.role not in allowed:
            raise Forbidden("You do not have permission to perform this action.")
        return credential

    return _check


def verify_refresh_request(request: Request) -> RefreshToken:
    """Gate for /refresh-token.

    Missing cookie -> Unauthenticated (401). Anything else wrong with the
    token -> Forbidden (403): signature checked with the refresh secret, and
    the value must match a live row in RefreshTokenStore.
    """
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise Unauthenticated("Refresh token is missing.")
    return get_auth_service(request).validate_refresh_token(token)
