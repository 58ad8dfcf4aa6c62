import functools
import logging
from typing import Optional, Any, Dict

from practice.models import AuditLog

logger = logging.getLogger(__name__)


def log_action(user_id: Optional[Any], action: str, resource: str = '', outcome: str = 'SUCCESS',
               metadata: Optional[Dict[str, Any]] = None) -> Optional[AuditLog]:
    """Write an audit row.  Never raises: a failed write is logged and dropped."""
    try:
        return AuditLog.objects.create(
            user_id=str(user_id) if user_id not in (None, '') else None,
            action=action,
            resource=(resource or '')[:255],
            outcome=outcome,
            metadata=metadata or {},
        )
    except Exception:
        logger.exception('failed to write audit log action=%s user=%s', action, user_id)
        return None


def outcome_for_status(status_code: int) -> str:
    if status_code >= 500:
        return 'FAILURE'
    if status_code >= 400:
        return 'DENIED'
    return 'SUCCESS'


def client_ip(request) -> Optional[str]:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def audited(action: str):
    """Audit every call of a view once its response is known.

    Wrap *outside* ``@api_view`` so the authenticated user set by DRF is
    visible on the underlying request.
    """
    def decorator(view):
        @functools.wraps(view)
        def wrapper(request, *args, **kwargs):
            response = view(request, *args, **kwargs)
            user = getattr(request, 'user', None)
            user_id = user.pk if user is not None and user.is_authenticated else 'anonymous'
            log_action(
                user_id,
                action,
                request.get_full_path(),
                outcome_for_status(response.status_code),
                {
                    'method': request.method,
                    'ip': client_ip(request),
                    'userAgent': request.META.get('HTTP_USER_AGENT', ''),
                    'statusCode': response.status_code,
                },
            )
            return response
        return wrapper
    return decorator
