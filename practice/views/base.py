"""
Shared plumbing of the tenant resource views.

Every clinical list goes through :func:`list_response` and every write
through :func:`create_response` / :func:`update_response`, so tenant
scoping, pagination, the response envelope and cache invalidation are
handled the same way for all resources.
"""
from urllib.parse import urlencode

from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from practice.models import Patient
from practice.serializers.clinical import ListQuerySerializer
from practice.services import response_cache
from practice.services.clinical import paginate
from practice.services.tenancy import current_tenant, tenant_db_alias, tenant_queryset

ANALYTICS = 'analytics'


def serializer_context(request) -> dict:
    return {
        'request': request,
        'using': tenant_db_alias(current_tenant(request)),
        'patients': tenant_queryset(request, Patient),
    }


def get_object(request, model, pk, select_related=()):
    qs = tenant_queryset(request, model)
    if select_related:
        qs = qs.select_related(*select_related)
    obj = qs.filter(pk=pk).first()
    if obj is None:
        raise NotFound(f'{model.__name__} not found')
    return obj


def list_response(request, namespace, model, serializer_class, *, search=None, order_by=('-created_at',),
                  select_related=(), restrict=None):
    """Paginated, cached list of the tenant's ``model`` rows.

    ``restrict`` holds extra filters that depend on the caller (a patient
    only sees their own rows); they are part of the cache key.
    """
    restrict = restrict or {}
    variant = urlencode(sorted(restrict.items()))
    cached = response_cache.lookup(request, namespace, variant)
    if cached is not None:
        return cached

    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data

    qs = tenant_queryset(request, model).filter(**restrict)
    if select_related:
        qs = qs.select_related(*select_related)
    if vd.get('status'):
        qs = qs.filter(status=vd['status'])
    if vd.get('patientId') and hasattr(model, 'patient'):
        qs = qs.filter(patient_id=vd['patientId'])
    if vd.get('q') and search:
        qs = search(qs, vd['q'])
    items, pagination = paginate(qs.order_by(*order_by), vd['page'], vd['pageSize'])

    payload = {
        'ok': True,
        'tenantId': str(current_tenant(request).id),
        'data': serializer_class(items, many=True, context=serializer_context(request)).data,
        'pagination': pagination,
    }
    return response_cache.store(request, namespace, Response(payload), variant=variant)


def create_response(request, namespace, serializer_class, **extra):
    tenant = current_tenant(request)
    context = serializer_context(request)
    s = serializer_class(data=request.data, context=context)
    s.is_valid(raise_exception=True)
    obj = s.save(tenant_id=str(tenant.id), **extra)
    response_cache.invalidate(tenant.id, namespace, ANALYTICS)
    return Response({'ok': True, 'data': serializer_class(obj, context=context).data},
                    status=status.HTTP_201_CREATED)


def update_response(request, namespace, instance, serializer_class):
    context = serializer_context(request)
    s = serializer_class(instance, data=request.data, partial=True, context=context)
    s.is_valid(raise_exception=True)
    obj = s.save()
    response_cache.invalidate(instance.tenant_id, namespace, ANALYTICS)
    return Response({'ok': True, 'data': serializer_class(obj, context=context).data})


def delete_response(request, namespace, instance):
    pk = instance.pk
    instance.delete()
    response_cache.invalidate(instance.tenant_id, namespace, ANALYTICS)
    return Response({'ok': True, 'id': pk})
