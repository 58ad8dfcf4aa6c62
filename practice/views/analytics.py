from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from practice.models import Plan
from practice.permissions import HasPermission, HasTenant, IsSuperAdmin
from practice.services import response_cache
from practice.services.audit import audited
from practice.services.clinical import network_analytics, practice_analytics
from practice.services.plans import plan_payload
from practice.services.tenancy import current_tenant
from practice.views.base import ANALYTICS


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasPermission('analytics:view'), HasTenant])
def analytics(request):
    cached = response_cache.lookup(request, ANALYTICS)
    if cached is not None:
        return cached
    tenant = current_tenant(request)
    payload = {'ok': True, 'tenantId': str(tenant.id), 'data': practice_analytics(tenant)}
    return response_cache.store(request, ANALYTICS, Response(payload))


@audited('ADMIN_TENANTS')
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def admin_tenants(request):
    tenants, totals = network_analytics()
    return Response({'ok': True, 'data': tenants, 'analytics': totals})


@api_view(['GET'])
@permission_classes([AllowAny])
def plans(request):
    data = [plan_payload(p) for p in Plan.objects.order_by('price_monthly')]
    return Response({'ok': True, 'data': data})
