"""Tests for normalized error responses."""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from scribe.core.errors import (
    AppError,
    PersistenceError,
    QuotaExceededError,
    UpstreamProviderError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from scribe.core.middleware.request_id import RequestIdMiddleware
from scribe.features.ai.provider import CompletionProviderError
from scribe.features.billing.provider import BillingProviderError


def _app():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(HTTPException, http_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/quota")
    async def quota():
        raise QuotaExceededError("Monthly ocr limit reached", used=10, limit=10)

    @test_app.get("/upstream")
    async def upstream():
        raise UpstreamProviderError("Stripe checkout session creation failed: api key sk_live_...")

    @test_app.get("/billing-upstream")
    async def billing_upstream():
        raise BillingProviderError("Stripe customer creation failed: rate limited")

    @test_app.get("/completion-upstream")
    async def completion_upstream():
        raise CompletionProviderError("Groq completion failed: timeout")

    @test_app.get("/storage")
    async def storage():
        raise PersistenceError("Storage operation failed: relation payment_records does not exist")

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("boom")

    return test_app


def test_quota_error_carries_used_and_limit():
    client = TestClient(_app())

    resp = client.get("/quota", headers={"x-request-id": "req-123"})

    body = resp.json()
    assert resp.status_code == 403
    assert resp.headers["x-request-id"] == "req-123"
    assert body["error"] == {
        "code": "quota_exceeded",
        "message": "Monthly ocr limit reached",
        "request_id": "req-123",
        "used": 10,
        "limit": 10,
    }
    assert body["detail"] == "Monthly ocr limit reached"


def test_upstream_error_message_is_generic():
    client = TestClient(_app())

    resp = client.get("/upstream")

    body = resp.json()
    assert resp.status_code == 502
    assert body["error"]["message"] == "Upstream provider request failed"
    assert "sk_live" not in json.dumps(body)
    assert "debug" not in body["error"]


@pytest.mark.parametrize(
    "path,code",
    [("/billing-upstream", "billing_provider_error"), ("/completion-upstream", "completion_provider_error")],
)
def test_provider_subclass_errors_use_upstream_message(path, code):
    client = TestClient(_app())

    resp = client.get(path)

    body = resp.json()
    assert resp.status_code == 502
    assert body["error"]["code"] == code
    assert body["error"]["message"] == "Upstream provider request failed"


def test_persistence_error_debug_field_in_development(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "ENV", "development")
    client = TestClient(_app())

    resp = client.get("/storage")

    body = resp.json()
    assert resp.status_code == 500
    assert body["error"]["message"] == "Storage operation failed"
    assert "payment_records" in body["error"]["debug"]


def test_unhandled_exception_is_internal_error():
    client = TestClient(_app(), raise_server_exceptions=False)

    resp = client.get("/boom")

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "internal_error"
