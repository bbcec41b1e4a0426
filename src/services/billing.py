"""Payment processor integration backed by the Stripe SDK."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe

from src.utils.config import get_settings
from src.utils.logger import get_logger

LOGGER = get_logger("airad.services.billing")


class BillingError(RuntimeError):
    """Raised when the payment processor rejects or fails a request."""


def format_invoice(invoice: Any) -> Dict[str, Any]:
    """Flatten a Stripe invoice into the shape the billing page renders."""

    created = datetime.fromtimestamp(invoice["created"], tz=timezone.utc)
    lines = (invoice.get("lines") or {}).get("data") or []
    description = lines[0].get("description") if lines else None
    status = invoice.get("status")
    return {
        "id": invoice["id"],
        "date": created.date().isoformat(),
        "amount": f"${(invoice.get('amount_paid') or 0) / 100:.2f}",
        "status": "paid" if status == "paid" else (status or "pending"),
        "description": description or f"Invoice {invoice.get('number') or invoice['id']}",
        "invoiceUrl": invoice.get("hosted_invoice_url") or "",
    }


class BillingService:
    """Create customers, checkout and portal sessions, and verify webhooks."""

    INVOICE_LIMIT = 20
    WEBHOOK_TOLERANCE_SECONDS = 300

    def __init__(
        self,
        *,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        if secret_key is None and settings.STRIPE_SECRET_KEY is not None:
            secret_key = settings.STRIPE_SECRET_KEY.get_secret_value()
        if webhook_secret is None and settings.STRIPE_WEBHOOK_SECRET is not None:
            webhook_secret = settings.STRIPE_WEBHOOK_SECRET.get_secret_value()
        self._secret_key = secret_key or None
        self._webhook_secret = webhook_secret or None
        self.price_plans: Dict[str, str] = {}
        if settings.STRIPE_PRICE_ID_PLUS:
            self.price_plans[settings.STRIPE_PRICE_ID_PLUS] = "plus"
        if settings.STRIPE_PRICE_ID_PRO:
            self.price_plans[settings.STRIPE_PRICE_ID_PRO] = "pro"

    @property
    def configured(self) -> bool:
        return self._secret_key is not None

    @property
    def webhook_configured(self) -> bool:
        return self._webhook_secret is not None

    def plan_for_price(self, price_id: Optional[str]) -> str:
        return self.price_plans.get(price_id or "", "free")

    def create_customer(self, *, email: str, user_id: str) -> str:
        customer = self._call(
            "customer.create",
            lambda: stripe.Customer.create(
                email=email,
                metadata={"user_id": user_id},
                api_key=self._secret_key,
            ),
        )
        return customer["id"]

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        session = self._call(
            "checkout.create",
            lambda: stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"user_id": user_id},
                api_key=self._secret_key,
            ),
        )
        return session["url"]

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        session = self._call(
            "portal.create",
            lambda: stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self._secret_key,
            ),
        )
        return session["url"]

    def list_invoices(self, customer_id: str) -> List[Dict[str, Any]]:
        invoices = self._call(
            "invoice.list",
            lambda: stripe.Invoice.list(
                customer=customer_id,
                limit=self.INVOICE_LIMIT,
                api_key=self._secret_key,
            ),
        )
        return [format_invoice(invoice) for invoice in invoices["data"]]

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook payload and return the decoded event.

        Raises :class:`BillingError` when the secret is missing, the signature
        does not match, or the body is not JSON.
        """

        if self._webhook_secret is None:
            raise BillingError("Webhook secret not configured")
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self.WEBHOOK_TOLERANCE_SECONDS
            )
            event = json.loads(body)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            LOGGER.warning(
                "Webhook signature verification failed.",
                extra={"context": {"error": str(exc)}},
            )
            raise BillingError(f"Webhook signature verification failed: {exc}") from exc
        LOGGER.info(
            "Verified webhook event.",
            extra={"context": {"event_type": event.get("type"), "event_id": event.get("id")}},
        )
        return event

    def _call(self, operation: str, func: Any) -> Any:
        if self._secret_key is None:
            raise BillingError("Stripe not configured")
        try:
            return func()
        except stripe.StripeError as exc:
            LOGGER.error(
                "Payment processor request failed.",
                extra={"context": {"operation": operation, "error": str(exc)}},
            )
            raise BillingError(f"Payment processor {operation} failed.") from exc
