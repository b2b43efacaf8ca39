"""
api/main.py -- FastAPI application entry point for LearnDeck.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for the front end, credentials allowed
  3. SessionMiddleware     -- OAuth state storage for authlib

Lifespan builds the AuthService once (stores, notifier, signing config,
strategies) and starts the expired-token sweep; shutdown cancels the sweep
and disposes the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth import errors
from auth.oauth import OAuthFederationAdapter
from auth.schema import make_engine
from auth.service import AuthService
from auth.sessions import RefreshTokenStore
from auth.store import CredentialStore
from auth.strategies import GitHubOAuthStrategy, GoogleOAuthStrategy, LocalStrategy
from auth.tokens import SigningConfig
from auth.verification import VerificationTokenIssuer
from core.config import Settings, get_settings
from core.mailer import ResendMailer

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("learndeck.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Service assembly
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings, engine=None, notifier=None) -> AuthService:
    """Wire the auth core from settings. Tests pass their own engine and notifier."""
    engine = engine if engine is not None else make_engine(settings.database_url)
    credentials = CredentialStore(engine, bcrypt_rounds=settings.bcrypt_rounds)
    return AuthService(
        credentials=credentials,
        verification=VerificationTokenIssuer(
            engine, credentials, ttl_seconds=settings.verification_token_expire_seconds
        ),
        refresh_tokens=RefreshTokenStore(engine),
        notifier=notifier or ResendMailer(settings.resend_api_key, settings.email_from, dev_mode=settings.debug),
        signing=SigningConfig.from_settings(settings),
        strategies=[LocalStrategy(credentials), GoogleOAuthStrategy(credentials), GitHubOAuthStrategy(credentials)],
        client_url=settings.client_url,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired verification and refresh tokens every `interval` seconds.

    Read paths already filter on expires_at, so this only keeps the tables
    small. The sweep runs in the threadpool to keep DB work off the event loop.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(app.state.auth_service.purge_expired)
        except Exception:
            logger.exception("Expired token sweep failed; retrying next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application resources on startup, release them on shutdown."""
    logger.info("LearnDeck API starting up")
    app.state.auth_service = build_auth_service(_settings)
    app.state.oauth = OAuthFederationAdapter()
    logger.info("Auth initialized (%d credentials)", app.state.auth_service.credentials.count())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.token_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.auth_service.notifier.close()
    app.state.auth_service.credentials.close()
    logger.info("LearnDeck API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LearnDeck API",
    description="E-learning platform backend: accounts, email verification, and cookie sessions.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,  # session cookies cross origins
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback (CSRF protection for
# the authorization code flow).
app.add_middleware(SessionMiddleware, secret_key=_settings.session_secret_key)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1/users", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope ({"success": false,
# "error": {...}}) so the status code and the success flag always agree.
# ---------------------------------------------------------------------------

_AUTH_ERROR_STATUS: dict[type[errors.AuthError], int] = {
    errors.ValidationError: 400,
    errors.InvalidOrExpiredToken: 400,
    errors.DuplicateEmail: 409,
    errors.PasswordMismatch: 401,
    errors.InvalidCredentials: 401,
    errors.Unauthenticated: 401,
    errors.UnverifiedAccount: 403,
    errors.Forbidden: 403,
    errors.NotFound: 404,
    errors.InternalError: 500,
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.exception_handler(errors.AuthError)
async def auth_error_handler(request: Request, exc: errors.AuthError) -> JSONResponse:
    """Map a domain error kind to its status. The message is already user-safe."""
    status_code = _AUTH_ERROR_STATUS.get(type(exc), 400)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or query params fail validation."""
    return _error_response(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No auth. Reports the database as "error" rather than failing the request so
# load balancers can tell "app up, DB down" from "app down".
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    try:
        request.app.state.auth_service.credentials.ping()
        database = "ok"
    except Exception:
        logger.exception("Health check: database ping failed")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
