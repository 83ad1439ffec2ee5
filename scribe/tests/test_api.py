"""
Test the billing and usage HTTP surface and its error contract.
"""
import json

import pytest
from fastapi.testclient import TestClient

from scribe.features.billing.provider import DisabledBillingProvider
from scribe.features.billing.service import get_billing_provider
from scribe.main import app
from scribe.tests.fakes import create_account, create_pro_account, make_event


@pytest.fixture
def client(billing_provider):
    app.dependency_overrides[get_billing_provider] = lambda: billing_provider
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_webhook_acknowledges_event(client):
    body = json.dumps(make_event("customer.created", {"id": "cus_1"}, event_id="evt_api"))

    resp = client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": "t=1,v1=x"})

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_id": "evt_api"}


def test_webhook_bad_signature_is_401(client, billing_provider):
    billing_provider.reject_signatures = True

    resp = client.post("/api/billing/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})

    body = resp.json()
    assert resp.status_code == 401
    assert body["error"]["code"] == "invalid_webhook_signature"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_checkout_requires_authenticated_user(client):
    resp = client.post("/api/billing/checkout", json={"plan_type": "PRO", "billing_cycle": "monthly"})

    assert resp.status_code == 401


def test_checkout_returns_session(client):
    user_id = create_account()

    resp = client.post(
        "/api/billing/checkout",
        json={"plan_type": "BASIC", "billing_cycle": "monthly"},
        headers={"X-User-Id": user_id},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["session_id"].startswith("cs_test")
    assert body["url"].endswith(body["session_id"])


def test_invalid_plan_is_400_with_standard_shape(client):
    user_id = create_account()

    resp = client.post(
        "/api/billing/checkout",
        json={"plan_type": "GOLD", "billing_cycle": "monthly"},
        headers={"X-User-Id": user_id},
    )

    body = resp.json()
    assert resp.status_code == 400
    assert body["error"]["code"] == "invalid_plan_type"
    assert body["detail"] == "Invalid plan type: GOLD"


def test_guest_checkout_endpoint(client):
    resp = client.post(
        "/api/billing/checkout-guest",
        json={"plan_type": "PRO", "billing_cycle": "yearly", "email": "guest@example.com"},
    )

    assert resp.status_code == 200
    assert resp.json()["session_id"].startswith("cs_test")


def test_portal_without_customer_is_404(client):
    user_id = create_account()

    resp = client.post("/api/billing/portal", headers={"X-User-Id": user_id})

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "customer_not_found"


def test_portal_returns_url(client):
    user_id = create_pro_account(stripe_customer_id="cus_api")

    resp = client.post("/api/billing/portal", json={"return_url": "http://localhost:3000/settings"}, headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://billing.stripe.test/cus_api"}


def test_billing_info_summarizes_subscription(client):
    user_id = create_pro_account()

    resp = client.get("/api/billing/", headers={"X-User-Id": user_id})

    body = resp.json()
    assert resp.status_code == 200
    assert body["subscription"]["plan_type"] == "PRO"
    assert body["subscription"]["status"] == "ACTIVE"
    assert body["plan"]["plan_type"] == "PRO"
    assert body["plan"]["price"] == 12.99
    assert body["payments"] == []


def test_disabled_billing_is_503():
    app.dependency_overrides[get_billing_provider] = DisabledBillingProvider
    try:
        client = TestClient(app)
        user_id = create_account()
        resp = client.post("/api/billing/checkout", json={"plan_type": "PRO"}, headers={"X-User-Id": user_id})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "billing_disabled"


def test_usage_quota_endpoint(client):
    user_id = create_account()

    resp = client.get("/api/usage/quota", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    assert resp.json() == {
        "notes": {"allowed": True, "used": 0, "limit": 20},
        "conversions": {"allowed": True, "used": 0, "limit": 10},
    }


def test_usage_stats_endpoint(client):
    user_id = create_pro_account()

    resp = client.get("/api/usage/stats", headers={"X-User-Id": user_id})

    body = resp.json()
    assert resp.status_code == 200
    assert body["plan"] == "PRO"
    assert body["notes"] == {"used": 0, "limit": -1}
    assert body["monthly_usage"]["total"] == 0


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
