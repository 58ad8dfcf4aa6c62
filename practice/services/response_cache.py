"""
Per-tenant caching of GET list responses.

Keys combine the tenant, a resource namespace, a generation counter,
the path and the sorted query string, plus a variant for lists that
depend on the caller.  Writes invalidate a namespace by bumping its
generation; entries of older generations age out.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from django.conf import settings
from django.core.cache import cache
from rest_framework.response import Response

from practice.services.tenancy import current_tenant

logger = logging.getLogger(__name__)


def _generation_key(tenant_id: str, namespace: str) -> str:
    return f'respcache:gen:{tenant_id}:{namespace}'


def _generation(tenant_id: str, namespace: str) -> int:
    return cache.get_or_set(_generation_key(tenant_id, namespace), 1, None)


def cache_key(request, namespace: str, variant: str = '') -> Optional[str]:
    tenant = current_tenant(request)
    if tenant is None:
        return None
    tid = str(tenant.id)
    query = urlencode(sorted(request.query_params.items()))
    key = f'respcache:{tid}:{namespace}:{_generation(tid, namespace)}:{request.path}?{query}'
    return f'{key}#{variant}' if variant else key


def lookup(request, namespace: str, variant: str = '') -> Optional[Response]:
    try:
        key = cache_key(request, namespace, variant)
        data = cache.get(key) if key else None
    except Exception:
        logger.exception('response cache lookup failed')
        return None
    if data is None:
        logger.debug('cache MISS %s', key)
        return None
    logger.debug('cache HIT %s', key)
    return Response(data, headers={'X-Cache': 'HIT'})


def store(request, namespace: str, response: Response, ttl: Optional[int] = None,
          variant: str = '') -> Response:
    """Cache ``response`` when it is a 200 and mark it as a miss."""
    response['X-Cache'] = 'MISS'
    if response.status_code != 200:
        return response
    try:
        key = cache_key(request, namespace, variant)
        if key:
            cache.set(key, response.data, ttl or settings.RESPONSE_CACHE_TTL)
    except Exception:
        logger.exception('response cache store failed')
    return response


def invalidate(tenant_id, *namespaces: str) -> None:
    for namespace in namespaces:
        key = _generation_key(str(tenant_id), namespace)
        try:
            try:
                cache.incr(key)
            except ValueError:
                cache.set(key, 2, None)
        except Exception:
            logger.exception('response cache invalidation failed for %s', key)
        else:
            logger.debug('invalidated %s', key)
