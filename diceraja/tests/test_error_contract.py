"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from diceraja.core.errors import (
    AppError,
    StoreUnavailableError,
    app_error_handler,
    unhandled_exception_handler,
)
from diceraja.core.middleware.request_id import RequestIdMiddleware
from diceraja.main import app


def test_validation_error_has_standard_shape(client):
    resp = client.post("/api/auth/register", json={"name": "x"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["success"] is False
    assert body["code"] == "validation_error"
    assert body["request_id"] == rid


def test_unknown_route_is_normalized(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == "not_found"
    assert body["request_id"] == resp.headers.get("x-request-id")


def _make_app():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/busy")
    async def busy():
        raise StoreUnavailableError("Reward store unavailable, please retry")

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return test_app


def test_store_unavailable_is_503():
    client = TestClient(_make_app())
    resp = client.get("/busy", headers={"X-Request-Id": "rid-503"})

    assert resp.status_code == 503
    assert resp.json() == {
        "success": False,
        "error": "Reward store unavailable, please retry",
        "code": "store_unavailable",
        "request_id": "rid-503",
    }


def test_unhandled_exception_hides_details():
    client = TestClient(_make_app(), raise_server_exceptions=False)
    resp = client.get("/boom")

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "internal_error"
    assert body["error"] == "Unexpected error"
    assert "kaboom" not in resp.text


def test_main_app_registers_error_handlers():
    assert AppError in app.exception_handlers
