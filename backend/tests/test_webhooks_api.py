"""Webhook endpoints end to end: signed delivery -> intake -> ledger store."""
import base64
import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient

from backend.features.webhooks.clerk_events import sign_svix
from backend.main import app


client = TestClient(app)

STRIPE_SECRET = "whsec_stripe_api_test"
CLERK_SECRET = "whsec_" + base64.b64encode(b"clerk-api-test-secret").decode()


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    monkeypatch.setenv("CLERK_WEBHOOK_SECRET", CLERK_SECRET)


def post_stripe(event_type, obj, event_id="evt_api_1", secret=STRIPE_SECRET):
    body = json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}).encode()
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/webhooks/stripe",
        content=body,
        headers={"stripe-signature": f"t={timestamp},v1={digest}", "content-type": "application/json"},
    )


def post_clerk(event_type, data, msg_id="msg_api_1"):
    body = json.dumps({"type": event_type, "object": "event", "data": data}).encode()
    timestamp = int(time.time())
    return client.post(
        "/api/webhooks/clerk",
        content=body,
        headers={
            "svix-id": msg_id,
            "svix-timestamp": str(timestamp),
            "svix-signature": sign_svix(CLERK_SECRET, msg_id, timestamp, body),
            "content-type": "application/json",
        },
    )


def test_checkout_upgrades_user(ledger_store):
    resp = post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_1"}})

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "status": "applied", "eventId": "evt_api_1"}
    assert ledger_store.get("users", "user_1")["role"] == "premium"


def test_redelivery_is_acknowledged_as_duplicate():
    post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_1"}})
    resp = post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_1"}})

    assert resp.status_code == 200
    assert resp.json()["status"] == "duplicate"


def test_unhandled_stripe_event_is_acknowledged():
    resp = post_stripe("invoice.paid", {"id": "in_1"}, event_id="evt_invoice")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_bad_signature_is_400_with_error_contract(ledger_store):
    resp = post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_1"}}, secret="whsec_wrong")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "invalid_signature"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]
    assert ledger_store.get("users", "user_1") is None


def test_unconfigured_secret_is_500(monkeypatch):
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
    resp = post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_1"}})
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "webhook_not_configured"


def test_clerk_signup_then_delete(ledger_store):
    data = {
        "id": "user_9",
        "first_name": "Ann",
        "primary_email_address_id": "idn_1",
        "email_addresses": [{"id": "idn_1", "email_address": "ann@example.com"}],
    }
    created = post_clerk("user.created", data, msg_id="msg_created")
    assert created.status_code == 200
    assert created.json()["status"] == "applied"
    assert ledger_store.get("users", "user_9")["name"] == "Ann"

    deleted = post_clerk("user.deleted", {"id": "user_9", "deleted": True}, msg_id="msg_deleted")
    assert deleted.json()["status"] == "applied"
    assert ledger_store.get("users", "user_9") is None

    late = post_stripe("checkout.session.completed", {"metadata": {"clerkId": "user_9"}}, event_id="evt_late")
    assert late.json() == {"received": True, "status": "dropped", "eventId": "evt_late", "reason": "tombstoned"}
