from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict

import pytest
import stripe

from src.services.billing import BillingError, BillingService, format_invoice

WEBHOOK_SECRET = "whsec_test_secret"


def _signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_format_invoice_flattens_for_billing_page() -> None:
    invoice = {
        "id": "in_123",
        "created": 1_760_000_000,
        "amount_paid": 2900,
        "status": "paid",
        "number": "A-1",
        "lines": {"data": [{"description": "Plus plan"}]},
        "hosted_invoice_url": "https://invoice.test/in_123",
    }

    assert format_invoice(invoice) == {
        "id": "in_123",
        "date": "2025-10-09",
        "amount": "$29.00",
        "status": "paid",
        "description": "Plus plan",
        "invoiceUrl": "https://invoice.test/in_123",
    }


def test_format_invoice_defaults() -> None:
    formatted = format_invoice({"id": "in_9", "created": 0, "status": None})

    assert formatted["status"] == "pending"
    assert formatted["amount"] == "$0.00"
    assert formatted["description"] == "Invoice in_9"
    assert formatted["invoiceUrl"] == ""


def test_construct_event_accepts_valid_signature() -> None:
    service = BillingService(secret_key="sk_test", webhook_secret=WEBHOOK_SECRET)
    payload = json.dumps({"id": "evt_1", "type": "invoice.payment_succeeded", "data": {"object": {}}})

    event = service.construct_event(payload.encode(), _signature(payload))

    assert event["type"] == "invoice.payment_succeeded"


def test_construct_event_rejects_bad_signature() -> None:
    service = BillingService(secret_key="sk_test", webhook_secret=WEBHOOK_SECRET)
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed"})

    with pytest.raises(BillingError, match="signature verification failed"):
        service.construct_event(payload.encode(), _signature(payload, secret="whsec_other"))


def test_construct_event_requires_secret() -> None:
    service = BillingService(secret_key="sk_test")

    assert service.webhook_configured is False
    with pytest.raises(BillingError, match="Webhook secret not configured"):
        service.construct_event(b"{}", "t=1,v1=abc")


def test_calls_require_secret_key() -> None:
    service = BillingService()

    assert service.configured is False
    with pytest.raises(BillingError, match="Stripe not configured"):
        service.create_customer(email="doc@example.com", user_id="u1")


def test_create_customer_passes_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: Dict[str, Any] = {}

    def _create(**kwargs: Any) -> Dict[str, Any]:
        captured.update(kwargs)
        return {"id": "cus_42"}

    monkeypatch.setattr(stripe.Customer, "create", _create)
    service = BillingService(secret_key="sk_test")

    assert service.create_customer(email="doc@example.com", user_id="u1") == "cus_42"
    assert captured["metadata"] == {"user_id": "u1"}
    assert captured["api_key"] == "sk_test"


def test_stripe_errors_become_billing_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _create(**kwargs: Any) -> Dict[str, Any]:
        raise stripe.StripeError("card declined")

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    service = BillingService(secret_key="sk_test")

    with pytest.raises(BillingError):
        service.create_checkout_session(
            customer_id="cus_1",
            price_id="price_plus",
            user_id="u1",
            success_url="http://testserver/billing?success=true",
            cancel_url="http://testserver/billing?canceled=true",
        )


def test_plan_for_price_uses_configured_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    from src.utils.config import get_settings

    monkeypatch.setenv("STRIPE_PRICE_ID_PLUS", "price_plus")
    monkeypatch.setenv("STRIPE_PRICE_ID_PRO", "price_pro")
    get_settings.cache_clear()

    service = BillingService()

    assert service.plan_for_price("price_pro") == "pro"
    assert service.plan_for_price("price_unknown") == "free"
    assert service.plan_for_price(None) == "free"
