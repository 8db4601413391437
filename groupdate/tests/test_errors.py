"""Tests for the error taxonomy and its HTTP mapping."""

import psycopg
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from groupdate.errors import (
    ConflictError,
    DatabaseError,
    ErrorResponse,
    NotFoundError,
    ServiceUnavailableError,
    UnauthorizedError,
    ValidationError,
    _status_to_error_type,
    register_exception_handlers,
)


class TestAPIErrors:
    @pytest.mark.parametrize(
        "cls, status, error",
        [
            (ValidationError, 400, "validation_error"),
            (UnauthorizedError, 401, "unauthorized"),
            (NotFoundError, 404, "not_found"),
            (ConflictError, 409, "conflict"),
            (DatabaseError, 500, "database_error"),
            (ServiceUnavailableError, 503, "service_unavailable"),
        ],
    )
    def test_defaults(self, cls, status, error):
        err = cls()
        assert err.status_code == status
        assert err.error == error
        assert err.detail
        assert err.context is None

    def test_context_and_code(self):
        err = ConflictError(
            detail="Cannot move from VOTE to RESULTS",
            error_code="illegal_transition",
            current="VOTE",
            target="RESULTS",
        )
        assert str(err) == "Cannot move from VOTE to RESULTS"
        assert err.error_code == "illegal_transition"
        assert err.context == {"current": "VOTE", "target": "RESULTS"}

    def test_to_response(self):
        response = NotFoundError(detail="Event not found").to_response()
        assert response.model_dump(exclude_none=True) == {"error": "not_found", "detail": "Event not found"}

    def test_error_response_minimal(self):
        assert ErrorResponse(error="internal_error").model_dump(exclude_none=True) == {"error": "internal_error"}


class Body(BaseModel):
    quorum: int


@pytest.fixture
def app_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict():
        raise ConflictError(detail="Voting closed", error_code="voting_closed", phase="RESULTS")

    @app.get("/unauthorized")
    async def unauthorized():
        raise UnauthorizedError(detail="Only the host can change the phase", error_code="host_required")

    @app.post("/body")
    async def body(payload: Body):
        return payload

    @app.get("/db")
    async def db():
        raise psycopg.OperationalError("connection refused to 10.0.0.5")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    return TestClient(app, raise_server_exceptions=False)


class TestExceptionHandlers:
    def test_conflict(self, app_client):
        resp = app_client.get("/conflict")
        assert resp.status_code == 409
        assert resp.json() == {
            "error": "conflict",
            "detail": "Voting closed",
            "error_code": "voting_closed",
            "context": {"phase": "RESULTS"},
        }

    def test_unauthorized(self, app_client):
        resp = app_client.get("/unauthorized")
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "host_required"

    def test_request_validation_is_400(self, app_client):
        resp = app_client.post("/body", json={"quorum": "many"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "validation_error"
        assert body["context"]["fields"] == ["body.quorum"]

    def test_database_errors_are_hidden(self, app_client):
        resp = app_client.get("/db")
        assert resp.status_code == 500
        assert resp.json() == {"error": "database_error", "detail": "Database operation failed"}

    def test_unhandled_exception(self, app_client):
        resp = app_client.get("/boom")
        assert resp.status_code == 500
        assert resp.json()["error"] == "internal_error"

    def test_unknown_route(self, app_client):
        resp = app_client.get("/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


def test_status_to_error_type():
    assert _status_to_error_type(400) == "validation_error"
    assert _status_to_error_type(409) == "conflict"
    assert _status_to_error_type(405) == "error"
