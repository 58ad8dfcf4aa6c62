"""
SaaS subscription billing through Stripe.

When no usable Stripe secret key is configured the service runs in mock
mode: checkout activates the tenant's subscription immediately and the
portal/upgrade/cancel calls act on the local rows only.  Webhook
verification never has a mock mode.
"""
import json
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from practice.models import Plan, SaasInvoice, Subscription, Tenant
from practice.services.audit import log_action

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = ('YOUR_SECRET_KEY', 'sk_test_xxx', 'changeme')
WEBHOOK_TOLERANCE = 300

# Stripe statuses without a local counterpart
STRIPE_STATUS_MAP = {
    'canceled': Subscription.STATUS_CANCELLED,
    'unpaid': Subscription.STATUS_PAST_DUE,
    'incomplete': Subscription.STATUS_PAST_DUE,
    'incomplete_expired': Subscription.STATUS_CANCELLED,
    'paused': Subscription.STATUS_PAST_DUE,
}

FREE_SUBSCRIPTION = {
    'plan': 'free',
    'status': 'active',
    'billingCycle': None,
    'currentPeriodEnd': None,
    'cancelAtPeriodEnd': False,
}


class BillingError(RuntimeError):
    """Stripe refused or failed a request."""


class WebhookError(ValueError):
    """The webhook payload could not be authenticated or parsed."""


class ForeignBillingObject(PermissionError):
    """A Stripe id supplied by the caller belongs to another tenant."""


def stripe_configured() -> bool:
    key = settings.STRIPE_SECRET_KEY or ''
    return key.startswith('sk_') and not any(p in key for p in PLACEHOLDER_KEYS)


def _own_id(supplied: Optional[str], own: str, kind: str) -> str:
    # Stripe ids always come from the tenant's own rows; a caller-supplied
    # id is only accepted when it names the same object.
    if supplied and supplied != own:
        raise ForeignBillingObject(f'{kind} does not belong to this practice')
    return own


def _configure():
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION
    return stripe


def price_for(plan: str, billing_period: str) -> Optional[str]:
    if plan in ('professional', 'pro'):
        if billing_period == 'annual':
            return settings.STRIPE_PRICE_PRO_ANNUAL or None
        return settings.STRIPE_PRICE_PRO_MONTHLY or None
    return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_epoch(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def subscription_payload(sub: Optional[Subscription]) -> Dict[str, Any]:
    if sub is None:
        return dict(FREE_SUBSCRIPTION)
    return {
        'id': sub.stripe_subscription_id or str(sub.pk),
        'plan': sub.plan_id or 'free',
        'status': sub.status,
        'billingCycle': sub.billing_cycle,
        'currentPeriodEnd': _iso(sub.current_period_end),
        'nextBillingDate': _iso(sub.next_billing_date),
        'cancelAtPeriodEnd': sub.cancel_at_period_end,
    }


def get_subscription(tenant: Optional[Tenant]) -> Optional[Subscription]:
    if tenant is None:
        return None
    return Subscription.objects.select_related('plan').filter(tenant=tenant).first()


# ---------------------------------------------------------------------
# Customer-facing operations
# ---------------------------------------------------------------------
def create_checkout_session(tenant: Optional[Tenant], *, plan: str, billing_period: str,
                            email: str, user_id=None) -> Dict[str, str]:
    if not email:
        raise ValueError('Email required')
    cycle = 'yearly' if billing_period == 'annual' else 'monthly'

    if not stripe_configured():
        logger.warning('Stripe not configured, checkout runs in mock mode')
        if tenant is not None:
            now = timezone.now()
            with transaction.atomic():
                Subscription.objects.update_or_create(
                    tenant=tenant,
                    defaults={
                        'plan': Plan.objects.filter(id=plan).first(),
                        'status': Subscription.STATUS_ACTIVE,
                        'billing_cycle': cycle,
                        'start_date': now,
                        'current_period_end': now + timedelta(days=30),
                        'next_billing_date': now + timedelta(days=30),
                        'cancel_at_period_end': False,
                        'stripe_subscription_id': f'sub_mock_{int(now.timestamp() * 1000)}',
                    },
                )
                Tenant.objects.filter(pk=tenant.pk).update(subscription_status=Tenant.STATUS_ACTIVE)
        ts = int(timezone.now().timestamp() * 1000)
        return {'url': f'{settings.FRONTEND_URL}/pricing?success=true&session_id=mock_session_{ts}'}

    price_id = price_for(plan, billing_period)
    if not price_id:
        raise ValueError('Invalid plan or billing period')
    try:
        session = _configure().checkout.Session.create(
            mode='subscription',
            payment_method_types=['card'],
            line_items=[{'price': price_id, 'quantity': 1}],
            customer_email=email,
            success_url=f'{settings.FRONTEND_URL}/pricing?success=true&session_id={{CHECKOUT_SESSION_ID}}',
            cancel_url=f'{settings.FRONTEND_URL}/pricing?canceled=true',
            metadata={
                'plan': plan,
                'billingPeriod': billing_period,
                'userId': str(user_id or ''),
                'tenantId': str(tenant.pk) if tenant else '',
            },
            subscription_data={'trial_period_days': settings.STRIPE_TRIAL_DAYS},
        )
    except stripe.StripeError as e:
        logger.error('Stripe checkout failed: %s', e)
        raise BillingError(str(e)) from e
    return {'url': session.url}


def create_portal_session(tenant: Optional[Tenant], customer_id: Optional[str] = None) -> Dict[str, str]:
    customer_id = _own_id(customer_id, tenant.stripe_customer_id if tenant else '', 'Customer')
    if not stripe_configured():
        return {'url': f'{settings.FRONTEND_URL}/subscription?portal_acting=true'}
    if not customer_id:
        raise ValueError('Customer ID required')
    try:
        session = _configure().billing_portal.Session.create(
            customer=customer_id,
            return_url=f'{settings.FRONTEND_URL}/subscription',
        )
    except stripe.StripeError as e:
        logger.error('Stripe portal session failed: %s', e)
        raise BillingError(str(e)) from e
    return {'url': session.url}


def upgrade_subscription(tenant: Optional[Tenant], new_price_id: str,
                         subscription_id: Optional[str] = None) -> Dict[str, Any]:
    sub = get_subscription(tenant)
    subscription_id = _own_id(subscription_id, sub.stripe_subscription_id if sub else '', 'Subscription')

    if not stripe_configured():
        plan = Plan.objects.filter(id=new_price_id).first()
        if sub is not None and plan is not None:
            sub.plan = plan
            sub.save(update_fields=['plan', 'updated_at'])
        return {
            'success': True,
            'subscription': {'id': subscription_id, 'items': {'data': [{'price': {'id': new_price_id}}]}},
        }

    if not subscription_id or not new_price_id:
        raise ValueError('Subscription ID and new price ID required')
    client = _configure()
    try:
        current = client.Subscription.retrieve(subscription_id)
        updated = client.Subscription.modify(
            subscription_id,
            items=[{'id': current['items']['data'][0]['id'], 'price': new_price_id}],
            proration_behavior='create_prorations',
        )
    except stripe.StripeError as e:
        logger.error('Stripe upgrade of %s failed: %s', subscription_id, e)
        raise BillingError(str(e)) from e
    return {
        'success': True,
        'subscription': {'id': updated['id'], 'status': updated['status'], 'items': {'data': [{'price': {'id': new_price_id}}]}},
    }


def cancel_subscription(tenant: Optional[Tenant], subscription_id: Optional[str] = None) -> Dict[str, Any]:
    sub = get_subscription(tenant)
    subscription_id = _own_id(subscription_id, sub.stripe_subscription_id if sub else '', 'Subscription')

    if stripe_configured():
        if not subscription_id:
            raise ValueError('Subscription ID required')
        try:
            _configure().Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error('Stripe cancellation of %s failed: %s', subscription_id, e)
            raise BillingError(str(e)) from e

    if sub is None:
        return {'success': True}
    sub.cancel_at_period_end = True
    sub.save(update_fields=['cancel_at_period_end', 'updated_at'])
    return {'success': True, 'subscription': subscription_payload(sub)}


# ---------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------
def construct_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """Authenticate a webhook delivery and return the decoded event.

    Raises :class:`WebhookError` on a missing or invalid signature, a
    stale timestamp or a body that is not JSON.
    """
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise WebhookError('Webhook secret not configured')
    if not sig_header:
        raise WebhookError('No Stripe-Signature header')
    try:
        text = payload.decode('utf-8') if isinstance(payload, bytes) else payload
    except UnicodeDecodeError as e:
        raise WebhookError(f'Invalid payload: {e}') from e
    try:
        stripe.WebhookSignature.verify_header(text, sig_header, secret, WEBHOOK_TOLERANCE)
    except stripe.SignatureVerificationError as e:
        raise WebhookError(str(e)) from e
    try:
        event = json.loads(text)
    except ValueError as e:
        raise WebhookError(f'Invalid payload: {e}') from e
    if not isinstance(event, dict) or 'type' not in event:
        raise WebhookError('Invalid payload: no event type')
    return event


def _tenant_for(obj: Dict[str, Any]) -> Optional[Tenant]:
    tenant_id = (obj.get('metadata') or {}).get('tenantId')
    if tenant_id:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        if tenant is not None:
            return tenant
    customer = obj.get('customer')
    if customer:
        return Tenant.objects.filter(stripe_customer_id=customer).first()
    return None


def _subscription_for(obj: Dict[str, Any], tenant: Optional[Tenant]) -> Optional[Subscription]:
    sub_id = obj.get('subscription') if obj.get('object') != 'subscription' else obj.get('id')
    if sub_id:
        sub = Subscription.objects.filter(stripe_subscription_id=sub_id).first()
        if sub is not None:
            return sub
    return get_subscription(tenant)


def _period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    end = obj.get('current_period_end')
    if not end:
        items = (obj.get('items') or {}).get('data') or []
        end = items[0].get('current_period_end') if items else None
    return _from_epoch(end)


def handle_checkout_completed(obj):
    tenant = _tenant_for(obj)
    if tenant is None:
        logger.warning('checkout session %s has no known tenant', obj.get('id'))
        return
    metadata = obj.get('metadata') or {}
    with transaction.atomic():
        if obj.get('customer'):
            tenant.stripe_customer_id = obj['customer']
        tenant.subscription_status = Tenant.STATUS_ACTIVE
        tenant.save(update_fields=['stripe_customer_id', 'subscription_status'])
        Subscription.objects.update_or_create(
            tenant=tenant,
            defaults={
                'plan': Plan.objects.filter(id=metadata.get('plan')).first() or tenant.plan,
                'status': Subscription.STATUS_ACTIVE,
                'billing_cycle': 'yearly' if metadata.get('billingPeriod') == 'annual' else 'monthly',
                'start_date': timezone.now(),
                'cancel_at_period_end': False,
                'stripe_subscription_id': obj.get('subscription') or '',
            },
        )
    logger.info('payment successful: session %s tenant %s', obj.get('id'), tenant.pk)


def handle_invoice_paid(obj):
    tenant = _tenant_for(obj)
    if tenant is None:
        logger.warning('paid invoice %s has no known tenant', obj.get('id'))
        return
    sub = _subscription_for(obj, tenant)
    with transaction.atomic():
        SaasInvoice.objects.update_or_create(
            stripe_invoice_id=obj['id'],
            defaults={
                'tenant': tenant,
                'subscription': sub,
                'number': obj.get('number') or '',
                'amount': Decimal(obj.get('amount_paid') or 0) / 100,
                'currency': (obj.get('currency') or 'eur').upper(),
                'status': 'paid',
                'paid_date': timezone.now(),
            },
        )
        if sub is not None:
            sub.status = Subscription.STATUS_ACTIVE
            sub.save(update_fields=['status', 'updated_at'])
        Tenant.objects.filter(pk=tenant.pk).update(subscription_status=Tenant.STATUS_ACTIVE)
    logger.info('invoice paid: %s', obj.get('id'))


def handle_invoice_payment_failed(obj):
    tenant = _tenant_for(obj)
    if tenant is None:
        logger.warning('failed invoice %s has no known tenant', obj.get('id'))
        return
    sub = _subscription_for(obj, tenant)
    with transaction.atomic():
        SaasInvoice.objects.update_or_create(
            stripe_invoice_id=obj['id'],
            defaults={
                'tenant': tenant,
                'subscription': sub,
                'number': obj.get('number') or '',
                'amount': Decimal(obj.get('amount_due') or 0) / 100,
                'currency': (obj.get('currency') or 'eur').upper(),
                'status': 'overdue',
                'due_date': _from_epoch(obj.get('due_date')),
            },
        )
        if sub is not None:
            sub.status = Subscription.STATUS_PAST_DUE
            sub.save(update_fields=['status', 'updated_at'])
        Tenant.objects.filter(pk=tenant.pk).update(subscription_status=Tenant.STATUS_GRACE)
    logger.warning('invoice payment failed: %s tenant %s enters grace period', obj.get('id'), tenant.pk)


def handle_subscription_changed(obj):
    tenant = _tenant_for(obj)
    sub = _subscription_for(obj, tenant)
    if sub is None and tenant is None:
        logger.warning('subscription %s has no known tenant', obj.get('id'))
        return
    status = obj.get('status') or Subscription.STATUS_ACTIVE
    status = STRIPE_STATUS_MAP.get(status, status)
    if sub is None:
        sub = Subscription(tenant=tenant, plan=tenant.plan, start_date=_from_epoch(obj.get('start_date')))
    sub.stripe_subscription_id = obj.get('id') or sub.stripe_subscription_id
    sub.status = status
    sub.current_period_end = _period_end(obj) or sub.current_period_end
    sub.next_billing_date = sub.current_period_end
    sub.cancel_at_period_end = bool(obj.get('cancel_at_period_end'))
    sub.save()
    logger.info('subscription %s synced: %s', obj.get('id'), status)


def handle_subscription_deleted(obj):
    tenant = _tenant_for(obj)
    sub = _subscription_for(obj, tenant)
    if sub is None:
        logger.warning('deleted subscription %s is unknown', obj.get('id'))
        return
    with transaction.atomic():
        sub.status = Subscription.STATUS_CANCELLED
        sub.cancel_at_period_end = False
        sub.save(update_fields=['status', 'cancel_at_period_end', 'updated_at'])
        Tenant.objects.filter(pk=sub.tenant_id).update(subscription_status=Tenant.STATUS_LIMITED, plan=None)
    logger.info('subscription deleted: %s, tenant %s downgraded', obj.get('id'), sub.tenant_id)


def handle_trial_will_end(obj):
    tenant = _tenant_for(obj)
    log_action(None, 'SUBSCRIPTION_TRIAL_ENDING', f'subscription:{obj.get("id")}',
               metadata={'tenantId': str(tenant.pk) if tenant else None, 'trialEnd': obj.get('trial_end')})
    logger.info('trial ending soon: %s', obj.get('id'))


WEBHOOK_HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    'checkout.session.completed': handle_checkout_completed,
    'invoice.paid': handle_invoice_paid,
    'invoice.payment_failed': handle_invoice_payment_failed,
    'customer.subscription.created': handle_subscription_changed,
    'customer.subscription.updated': handle_subscription_changed,
    'customer.subscription.deleted': handle_subscription_deleted,
    'customer.subscription.trial_will_end': handle_trial_will_end,
}


def dispatch_event(event: Dict[str, Any]) -> bool:
    """Run the handler for ``event``; ``False`` when its type is unhandled."""
    handler = WEBHOOK_HANDLERS.get(event.get('type'))
    if handler is None:
        logger.info('Unhandled event type %s', event.get('type'))
        return False
    handler((event.get('data') or {}).get('object') or {})
    return True
