from __future__ import annotations

import json
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from src.services.datastore import DataStore
from src.utils.config import get_settings

OWNER_ID = "mock-user-radiologist-123"


def _post_event(client: TestClient, event: Dict[str, Any], signature: str = "valid"):
    return client.post(
        "/api/stripe/webhook",
        content=json.dumps(event).encode(),
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def test_checkout_requires_price_id(radiologist: TestClient) -> None:
    response = radiologist.post("/api/billing/checkout", json={})

    assert response.status_code == 400
    assert response.json()["validationErrors"] == {"priceId": "Missing priceId"}


def test_checkout_rejects_unknown_price(radiologist: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STRIPE_PRICE_ID_PLUS", "price_plus")
    get_settings.cache_clear()

    response = radiologist.post("/api/billing/checkout", json={"priceId": "price_other"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid priceId"


def test_checkout_creates_customer_once(radiologist: TestClient, billing, datastore: DataStore) -> None:
    first = radiologist.post("/api/billing/checkout", json={"priceId": "price_plus"})
    second = radiologist.post("/api/billing/checkout", json={"priceId": "price_pro"})

    assert first.status_code == 200
    assert first.json() == {"url": "https://checkout.test/session"}
    assert second.status_code == 200
    assert billing.customers == [{"email": "radiologist@test.com", "user_id": OWNER_ID}]
    assert billing.checkouts[0]["success_url"] == "http://testserver/billing?success=true"
    assert billing.checkouts[1]["customer_id"] == "cus_1"

    row = datastore.select_one("subscriptions", {"user_id": OWNER_ID})
    assert row["stripe_customer_id"] == "cus_1"
    assert row["plan"] == "free"


def test_unconfigured_processor(radiologist: TestClient, billing) -> None:
    billing.configured = False

    response = radiologist.post("/api/billing/checkout", json={"priceId": "price_plus"})

    assert response.status_code == 500
    assert response.json()["message"] == "Stripe not configured"


def test_portal_and_invoices_need_a_customer(radiologist: TestClient, datastore: DataStore) -> None:
    assert radiologist.post("/api/billing/portal").json()["message"] == "No subscription found"
    assert radiologist.get("/api/billing/invoices").json() == {"data": []}

    datastore.upsert("subscriptions", {"user_id": OWNER_ID, "plan": "free"}, on_conflict="user_id")
    assert radiologist.post("/api/billing/portal").json()["message"] == "No Stripe customer linked"

    datastore.upsert("subscriptions", {"user_id": OWNER_ID, "stripe_customer_id": "cus_9"}, on_conflict="user_id")
    assert radiologist.post("/api/billing/portal").json() == {"url": "https://portal.test/cus_9"}
    assert radiologist.get("/api/billing/invoices").json()["data"][0]["id"] == "in_1"


def test_webhook_requires_signature(client: TestClient) -> None:
    response = client.post("/api/stripe/webhook", content=b"{}")

    assert response.status_code == 400
    assert response.json()["message"] == "Missing stripe-signature header"


def test_webhook_rejects_bad_signature(client: TestClient) -> None:
    response = _post_event(client, {"type": "invoice.payment_failed"}, signature="forged")

    assert response.status_code == 400
    assert "signature verification failed" in response.json()["message"]


def test_webhook_without_secret(client: TestClient, billing) -> None:
    billing.webhook_configured = False

    response = _post_event(client, {"type": "invoice.payment_failed"})

    assert response.status_code == 500
    assert response.json()["message"] == "Webhook secret not configured"


def test_subscription_lifecycle_events(client: TestClient, datastore: DataStore) -> None:
    completed = _post_event(
        client,
        {
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": {"user_id": OWNER_ID}}},
        },
    )
    assert completed.json() == {"received": True, "event_type": "checkout.session.completed"}

    _post_event(
        client,
        {
            "type": "customer.subscription.updated",
            "data": {
                "object": {
                    "id": "sub_1",
                    "customer": "cus_1",
                    "status": "active",
                    "items": {"data": [{"price": {"id": "price_pro"}}]},
                    "current_period_start": 1_760_000_000,
                    "current_period_end": 1_762_592_000,
                }
            },
        },
    )
    row = datastore.select_one("subscriptions", {"user_id": OWNER_ID})
    assert row["plan"] == "pro"
    assert row["period_start"] == "2025-10-09T08:53:20+00:00"

    _post_event(client, {"type": "invoice.payment_failed", "data": {"object": {"customer": "cus_1"}}})
    assert datastore.select_one("subscriptions", {"user_id": OWNER_ID})["status"] == "past_due"

    _post_event(client, {"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}}})
    row = datastore.select_one("subscriptions", {"user_id": OWNER_ID})
    assert row["plan"] == "free"
    assert row["status"] == "canceled"
    assert row["stripe_subscription_id"] is None


def test_webhook_writes_run_off_the_event_loop(client: TestClient, loop_usage) -> None:
    calls = loop_usage("select", "select_one", "insert", "update", "upsert")

    response = _post_event(
        client,
        {
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": {"user_id": OWNER_ID}}},
        },
    )

    assert response.status_code == 200
    assert calls
    assert not any(calls)


def test_unhandled_events_are_acknowledged(client: TestClient) -> None:
    response = _post_event(client, {"type": "customer.created", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.json()["event_type"] == "customer.created"


def test_webhook_rejects_get(client: TestClient) -> None:
    response = client.get("/api/stripe/webhook")

    assert response.status_code == 405
    assert response.json() == {"error": "Method not allowed"}
