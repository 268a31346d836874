"""Normalized error payloads, request id propagation and structured logs."""
import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from backend.core.errors import (
    AppError,
    NotFoundError,
    TransientStoreError,
    app_error_handler,
    unhandled_exception_handler,
)
from backend.core.middleware.request_id import RequestIdMiddleware
from backend.main import app


client = TestClient(app)


def _make_app():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/")
    async def root(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    @test_app.get("/missing")
    async def missing():
        raise NotFoundError("Nothing here")

    @test_app.get("/flaky")
    async def flaky():
        raise TransientStoreError("Ledger timed out")

    return test_app


def test_generates_request_id_when_missing():
    resp = TestClient(_make_app()).get("/")
    assert resp.status_code == 200
    assert resp.headers.get("x-request-id")
    assert resp.headers["x-request-id"] == resp.json()["request_id"]


def test_echoes_provided_request_id():
    resp = TestClient(_make_app()).get("/", headers={"X-Request-Id": "test-rid-123"})
    assert resp.headers.get("x-request-id") == "test-rid-123"
    assert resp.json()["request_id"] == "test-rid-123"


def test_app_error_payload_shape():
    resp = TestClient(_make_app()).get("/missing", headers={"X-Request-Id": "rid-404"})
    assert resp.status_code == 404
    assert resp.json() == {
        "error": {"code": "not_found", "message": "Nothing here", "request_id": "rid-404"},
        "detail": "Nothing here",
    }


def test_transient_failure_is_503_with_retry_after():
    resp = TestClient(_make_app()).get("/flaky")
    assert resp.status_code == 503
    assert resp.headers.get("retry-after") == "1"
    assert resp.json()["error"]["code"] == "transient_failure"


def test_unknown_route_uses_error_contract():
    resp = client.get("/api/posts/does-not-exist")
    rid = resp.headers.get("x-request-id")
    assert resp.status_code == 404
    assert rid
    assert resp.json()["error"]["request_id"] == rid


def test_request_id_in_logs(caplog):
    with caplog.at_level(logging.INFO, logger="inkwell"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert any(r.getMessage() == "request.complete" for r in records)


def test_request_complete_log_carries_structured_fields(caplog):
    with caplog.at_level(logging.INFO, logger="inkwell"):
        response = client.get("/healthz", headers={"X-Request-Id": "rid-structured"})
    assert response.status_code == 200

    [record] = [r for r in caplog.records if r.getMessage() == "request.complete" and r.request_id == "rid-structured"]
    assert record.method == "GET"
    assert record.path == "/healthz"
    assert record.status == "200"
    assert record.latency_bucket
