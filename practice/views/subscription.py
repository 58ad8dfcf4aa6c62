"""
SaaS subscription endpoints and the Stripe webhook receiver.

All customer-facing calls act for the tenant of the authenticated user
and fall back to mock behaviour when Stripe is not configured (see
``practice.services.billing``).
"""
import logging

from django.http import HttpResponse
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from practice.permissions import HasPermission
from practice.serializers.billing import (
    CancelSerializer,
    CheckoutSerializer,
    PortalSerializer,
    UpgradeSerializer,
)
from practice.services import billing
from practice.services.audit import audited, log_action
from practice.services.tenancy import current_tenant

logger = logging.getLogger(__name__)


def _billing_error(e: Exception, status: int) -> Response:
    code = 'invalid' if status == 400 else 'stripe_error'
    return Response({'ok': False, 'error': {'code': code, 'message': str(e)}}, status=status)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def subscription(request):
    sub = billing.get_subscription(current_tenant(request))
    return Response({'subscription': billing.subscription_payload(sub)})


@audited('SUBSCRIPTION_CHECKOUT')
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_checkout_session(request):
    s = CheckoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    try:
        result = billing.create_checkout_session(
            current_tenant(request),
            plan=vd['plan'],
            billing_period=vd['billingPeriod'],
            email=vd.get('email', ''),
            user_id=request.user.pk,
        )
    except ValueError as e:
        return _billing_error(e, 400)
    except billing.BillingError as e:
        return _billing_error(e, 502)
    return Response(result)


@audited('SUBSCRIPTION_PORTAL')
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_portal_session(request):
    s = PortalSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        result = billing.create_portal_session(current_tenant(request), s.validated_data.get('customerId'))
    except ValueError as e:
        return _billing_error(e, 400)
    except billing.BillingError as e:
        return _billing_error(e, 502)
    return Response(result)


@audited('SUBSCRIPTION_UPGRADE')
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasPermission('subscription:manage')])
def upgrade_subscription(request):
    s = UpgradeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        result = billing.upgrade_subscription(
            current_tenant(request), s.validated_data['newPriceId'], s.validated_data.get('subscriptionId'),
        )
    except ValueError as e:
        return _billing_error(e, 400)
    except billing.BillingError as e:
        return _billing_error(e, 502)
    return Response(result)


@audited('SUBSCRIPTION_CANCEL')
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasPermission('subscription:manage')])
def cancel_subscription(request):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        result = billing.cancel_subscription(current_tenant(request), s.validated_data.get('subscriptionId'))
    except ValueError as e:
        return _billing_error(e, 400)
    except billing.BillingError as e:
        return _billing_error(e, 502)
    return Response(result)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def stripe_webhook(request):
    try:
        event = billing.construct_event(request.body, request.headers.get('Stripe-Signature'))
    except billing.WebhookError as e:
        logger.warning('Webhook signature verification failed: %s', e)
        log_action(None, 'STRIPE_WEBHOOK', 'webhooks:stripe', 'DENIED', {'error': str(e)})
        return HttpResponse(f'Webhook Error: {e}', status=400, content_type='text/plain')

    handled = billing.dispatch_event(event)
    log_action(None, 'STRIPE_WEBHOOK', f"webhooks:stripe:{event.get('type')}", 'SUCCESS',
               {'eventId': event.get('id'), 'handled': handled})
    return Response({'received': True})
