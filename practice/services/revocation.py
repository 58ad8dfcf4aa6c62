"""
Revocation list for access tokens and suspended accounts.

Access tokens are short lived and stateless, so logging out only takes
effect if the token id is remembered until the token would have
expired.  Entries live in the default cache (Redis in production) with
a TTL matching the token's remaining lifetime.  Every check fails open:
if the cache is unreachable the request proceeds and the error is
logged.
"""
import logging
import threading
import time

from django.conf import settings
from django.core.cache import cache
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)

TOKEN_PREFIX = 'revoked:jti:'
USER_PREFIX = 'revoked:user:'
INDEX_KEY = 'revoked:index'

_index_lock = threading.Lock()


def revoke_token(jti: str, expires_at: int) -> bool:
    """Revoke the token ``jti`` until ``expires_at`` (epoch seconds)."""
    ttl = int(expires_at - time.time())
    if ttl <= 0:
        return True
    try:
        cache.set(TOKEN_PREFIX + jti, 1, ttl)
        _track(TOKEN_PREFIX + jti, expires_at)
    except Exception:
        logger.exception('cannot revoke token %s', jti)
        return False
    logger.info('token revoked jti=%s ttl=%ss', jti, ttl)
    return True


def is_token_revoked(jti: str) -> bool:
    try:
        return bool(cache.get(TOKEN_PREFIX + jti))
    except Exception:
        logger.exception('revocation check failed for token %s', jti)
        return False


def revoke_user(user_id, seconds: int = 3600) -> bool:
    """Reject every token of ``user_id`` for ``seconds``."""
    try:
        cache.set(f'{USER_PREFIX}{user_id}', 1, seconds)
        _track(f'{USER_PREFIX}{user_id}', time.time() + seconds)
    except Exception:
        logger.exception('cannot suspend user %s', user_id)
        return False
    logger.warning('all tokens of user %s suspended for %ss', user_id, seconds)
    return True


def is_user_revoked(user_id) -> bool:
    try:
        return bool(cache.get(f'{USER_PREFIX}{user_id}'))
    except Exception:
        logger.exception('revocation check failed for user %s', user_id)
        return False


def revoked_count() -> int:
    """Number of live revocation entries."""
    now = time.time()
    try:
        client = _redis_client()
        if client is not None:
            key = cache.make_key(INDEX_KEY)
            pipe = client.pipeline()
            pipe.zremrangebyscore(key, '-inf', now)
            pipe.zcard(key)
            return pipe.execute()[1]
        with _index_lock:
            return len(_pruned(cache.get(INDEX_KEY) or {}, now))
    except Exception:
        logger.exception('cannot read revocation index')
        return 0


def _redis_client():
    """Raw client when the cache is django-redis, else ``None``."""
    if not settings.CACHES['default']['BACKEND'].startswith('django_redis'):
        return None
    return get_redis_connection('default')


def _pruned(index: dict, now: float) -> dict:
    return {k: exp for k, exp in index.items() if exp > now}


def _track(key: str, expires_at: float) -> None:
    # Key patterns are not portable across cache backends, so the index
    # is kept explicitly and only ever holds live entries.
    now = time.time()
    client = _redis_client()
    if client is not None:
        # sorted set scored by expiry; one atomic round trip per write
        index = cache.make_key(INDEX_KEY)
        pipe = client.pipeline()
        pipe.zadd(index, {key: expires_at})
        pipe.zremrangebyscore(index, '-inf', now)
        pipe.execute()
        return
    # Local backends: the lock serialises writers within this process.
    with _index_lock:
        index = _pruned(cache.get(INDEX_KEY) or {}, now)
        index[key] = expires_at
        cache.set(INDEX_KEY, index, None)
