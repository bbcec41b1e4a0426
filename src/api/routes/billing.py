'''Subscription checkout, billing portal, invoices and payment webhooks.'''

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ...services.auth import AuthUser
from ...services.billing import BillingError, BillingService
from ...services.datastore import DataStore, DataStoreError, utc_now_iso
from ...utils.config import get_settings
from ...utils.logger import get_logger
from ..dependencies import get_billing, get_current_user, get_datastore
from ..errors import ConfigurationError, InternalServerError, ValidationError, database_errors
from ..models import CheckoutRequest

logger = get_logger('airad.api.billing')

router = APIRouter(tags=['billing'])


def _subscription(datastore: DataStore, user_id: str) -> Optional[Dict[str, Any]]:
    with database_errors('Failed to load subscription'):
        return datastore.select_one('subscriptions', {'user_id': user_id})


@router.post('/api/billing/checkout')
def create_checkout(
    payload: CheckoutRequest,
    user: AuthUser = Depends(get_current_user),
    billing: BillingService = Depends(get_billing),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Start a subscription checkout, creating the processor customer on first use.'''

    settings = get_settings()
    price_id = payload.price_id
    if not price_id:
        raise ValidationError.for_field('priceId', 'Missing priceId')
    valid_prices = settings.valid_price_ids
    if valid_prices and price_id not in valid_prices:
        raise ValidationError.for_field('priceId', 'Invalid priceId')

    subscription = _subscription(datastore, user.id)
    customer_id = (subscription or {}).get('stripe_customer_id')
    try:
        if not customer_id:
            customer_id = billing.create_customer(email=user.email, user_id=user.id)
            now = utc_now_iso()
            try:
                datastore.upsert(
                    'subscriptions',
                    {
                        'user_id': user.id,
                        'stripe_customer_id': customer_id,
                        'plan': 'free',
                        'status': 'active',
                        'period_start': now,
                        'period_end': now,
                    },
                    on_conflict='user_id',
                )
            except DataStoreError as exc:
                # The subscription webhook creates the row if this write is lost.
                logger.warning('Failed to store customer id.', extra={'context': {'error': str(exc)}})

        url = billing.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=user.id,
            success_url=f'{settings.APP_URL}/billing?success=true',
            cancel_url=f'{settings.APP_URL}/billing?canceled=true',
        )
    except BillingError as exc:
        raise InternalServerError('Failed to create checkout session') from exc
    return {'url': url}


@router.post('/api/billing/portal')
def create_portal(
    user: AuthUser = Depends(get_current_user),
    billing: BillingService = Depends(get_billing),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    subscription = _subscription(datastore, user.id)
    if subscription is None:
        raise ValidationError('No subscription found')
    customer_id = subscription.get('stripe_customer_id')
    if not customer_id:
        raise ValidationError('No Stripe customer linked')
    try:
        url = billing.create_portal_session(
            customer_id=customer_id, return_url=f'{get_settings().APP_URL}/billing'
        )
    except BillingError as exc:
        raise InternalServerError('Failed to create portal session') from exc
    return {'url': url}


@router.get('/api/billing/invoices')
def list_invoices(
    user: AuthUser = Depends(get_current_user),
    billing: BillingService = Depends(get_billing),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    subscription = _subscription(datastore, user.id)
    customer_id = (subscription or {}).get('stripe_customer_id')
    if not customer_id:
        return {'data': []}
    try:
        return {'data': billing.list_invoices(customer_id)}
    except BillingError as exc:
        raise InternalServerError('Failed to fetch invoices') from exc


# --------------------------------------------------------------------------- #
# Webhook
# --------------------------------------------------------------------------- #


def _iso_from_epoch(value: Any) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _update_by_customer(datastore: DataStore, customer_id: Optional[str], changes: Dict[str, Any]) -> int:
    if not customer_id:
        return 0
    return len(datastore.update('subscriptions', {'stripe_customer_id': customer_id}, changes))


def _on_checkout_completed(datastore: DataStore, billing: BillingService, session: Dict[str, Any]) -> None:
    user_id = (session.get('metadata') or {}).get('user_id')
    if not user_id:
        logger.warning('Checkout session has no user id.', extra={'context': {'session_id': session.get('id')}})
        return
    datastore.upsert(
        'subscriptions',
        {
            'user_id': user_id,
            'stripe_customer_id': session.get('customer'),
            'stripe_subscription_id': session.get('subscription'),
            'status': 'active',
        },
        on_conflict='user_id',
    )


def _on_subscription_changed(datastore: DataStore, billing: BillingService, subscription: Dict[str, Any]) -> None:
    items = (subscription.get('items') or {}).get('data') or []
    price_id = (items[0].get('price') or {}).get('id') if items else None
    changes = {
        'stripe_subscription_id': subscription.get('id'),
        'plan': billing.plan_for_price(price_id),
        'status': subscription.get('status'),
    }
    period_start = _iso_from_epoch(subscription.get('current_period_start'))
    period_end = _iso_from_epoch(subscription.get('current_period_end'))
    if period_start:
        changes['period_start'] = period_start
    if period_end:
        changes['period_end'] = period_end
    _update_by_customer(datastore, subscription.get('customer'), changes)


def _on_subscription_deleted(datastore: DataStore, billing: BillingService, subscription: Dict[str, Any]) -> None:
    _update_by_customer(
        datastore,
        subscription.get('customer'),
        {'plan': 'free', 'status': 'canceled', 'stripe_subscription_id': None},
    )


def _on_payment_failed(datastore: DataStore, billing: BillingService, invoice: Dict[str, Any]) -> None:
    _update_by_customer(datastore, invoice.get('customer'), {'status': 'past_due'})


def _on_payment_succeeded(datastore: DataStore, billing: BillingService, invoice: Dict[str, Any]) -> None:
    logger.info(
        'Invoice paid.',
        extra={'context': {'invoice_id': invoice.get('id'), 'amount_paid': invoice.get('amount_paid')}},
    )


EVENT_HANDLERS = {
    'checkout.session.completed': _on_checkout_completed,
    'customer.subscription.created': _on_subscription_changed,
    'customer.subscription.updated': _on_subscription_changed,
    'customer.subscription.deleted': _on_subscription_deleted,
    'invoice.payment_succeeded': _on_payment_succeeded,
    'invoice.payment_failed': _on_payment_failed,
}


@router.post('/api/stripe/webhook')
async def stripe_webhook(request: Request, datastore: DataStore = Depends(get_datastore)) -> Dict[str, Any]:
    '''Verify the signature, then apply the event to the ``subscriptions`` table.'''

    payload = await request.body()
    signature = request.headers.get('stripe-signature')
    if not signature:
        raise ValidationError('Missing stripe-signature header')

    billing: BillingService = request.app.state.billing
    if not billing.webhook_configured:
        raise ConfigurationError('Webhook secret not configured')
    try:
        event = billing.construct_event(payload, signature)
    except BillingError as exc:
        raise ValidationError(str(exc)) from exc

    event_type = event.get('type')
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info('Unhandled webhook event.', extra={'context': {'event_type': event_type}})
    else:
        obj = (event.get('data') or {}).get('object') or {}
        try:
            await run_in_threadpool(handler, datastore, billing, obj)
        except DataStoreError as exc:
            raise InternalServerError('Webhook handler failed') from exc
    return {'received': True, 'event_type': event_type}


@router.get('/api/stripe/webhook')
def stripe_webhook_method_not_allowed() -> JSONResponse:
    return JSONResponse(status_code=405, content={'error': 'Method not allowed'})
