"""
tests/test_dependencies.py -- Tests for the require_role() dependency factory.

A minimal FastAPI app mounts one role-gated route with the production
AuthError handler, so the gate is exercised through real dependency
resolution and cookie parsing.
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from api.main import auth_error_handler
from auth.dependencies import require_role
from auth.errors import AuthError
from auth.models import Credential
from auth.schema import credentials as table
from auth.tokens import ACCESS_COOKIE, issue_access_token


@pytest.fixture
def gated(service):
    app = FastAPI()
    app.state.auth_service = service
    app.add_exception_handler(AuthError, auth_error_handler)

    @app.get("/teachers-only")
    def teachers_only(credential: Credential = Depends(require_role("teacher", "admin"))):
        return {"id": credential.id}

    return TestClient(app)


def _cookie_for(service, credential: Credential) -> dict[str, str]:
    return {ACCESS_COOKIE: issue_access_token(credential, service.signing).token}


def test_no_token_is_401(gated: TestClient) -> None:
    resp = gated.get("/teachers-only")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"


def test_wrong_role_is_403(gated: TestClient, service, verified_user) -> None:
    user_id = verified_user()
    gated.cookies.set(ACCESS_COOKIE, _cookie_for(service, service.credentials.find_by_id(user_id))[ACCESS_COOKIE])
    resp = gated.get("/teachers-only")
    assert resp.status_code == 403
    assert resp.json() == {
        "success": False,
        "error": {"code": "forbidden", "message": "You do not have permission to perform this action.", "detail": None},
    }


def test_allowed_role_passes(gated: TestClient, service, engine, verified_user) -> None:
    user_id = verified_user()
    with engine.connect() as conn:
        conn.execute(table.update().where(table.c.id == user_id).values(role="teacher"))
        conn.commit()
    teacher = service.credentials.find_by_id(user_id)
    gated.cookies.set(ACCESS_COOKIE, _cookie_for(service, teacher)[ACCESS_COOKIE])
    resp = gated.get("/teachers-only")
    assert resp.status_code == 200
    assert resp.json() == {"id": user_id}


def test_unknown_role_rejected_at_definition() -> None:
    with pytest.raises(ValueError, match="superuser"):
        require_role("teacher", "superuser")
