import logging

from django.conf import settings
from django.db import connections
from django.http import FileResponse, JsonResponse
from django.middleware.csrf import get_token
from django.utils import timezone
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)


def _database_status() -> str:
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return 'UP' if row and row[0] == 1 else 'DOWN'
    except Exception:
        logger.exception('health check: database unreachable')
        return 'DOWN'


def _redis_status() -> str:
    if not settings.REDIS_URL:
        return 'DISABLED'
    try:
        from django_redis import get_redis_connection

        return 'UP' if get_redis_connection('default').ping() else 'DOWN'
    except Exception:
        logger.exception('health check: redis unreachable')
        return 'DOWN'


@require_GET
def healthz(request):
    services = {'database': _database_status(), 'redis': _redis_status()}
    healthy = services['database'] == 'UP'
    payload = {
        'status': 'OK' if healthy and services['redis'] != 'DOWN' else 'DEGRADED',
        'version': settings.APP_VERSION,
        'timestamp': timezone.now().isoformat(),
        'services': services,
    }
    return JsonResponse(payload, status=200 if healthy else 503)


@require_GET
@ensure_csrf_cookie
def csrf_token(request):
    return JsonResponse({'csrfToken': get_token(request)})


@require_GET
def spa_index(request, path=''):
    """Serve the frontend entry point for client-side routes."""
    index = settings.FRONTEND_DIST / 'index.html'
    if not index.is_file():
        return JsonResponse({'ok': False, 'error': {'code': 'not_found', 'message': 'Not found'}}, status=404)
    return FileResponse(index.open('rb'), content_type='text/html')
