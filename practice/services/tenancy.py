"""
Multi-tenant database routing.

The management database is Django's ``default`` connection and is
shared by the whole process.  Tenants with a dedicated database get a
:class:`TenantClient`, created lazily the first time their connection
string is seen and kept for the lifetime of the process.  Clients are
keyed by the raw connection string: two strings that point at the same
database but differ textually produce two clients.
"""
from __future__ import annotations

import hashlib
import logging
import threading
import uuid
import weakref
from typing import Dict, Optional, Type
from urllib.parse import quote

import dj_database_url  # type: ignore
from django.conf import settings
from django.db import connections, models
from django.db.backends.signals import connection_created
from django.dispatch import receiver

from practice.models import Tenant

logger = logging.getLogger(__name__)

MANAGEMENT_ALIAS = 'default'


def management_connection():
    """Return the process-wide management database connection."""
    return connections[MANAGEMENT_ALIAS]


def tenant_connection_url(tenant: Tenant) -> Optional[str]:
    """Connection string of the tenant's dedicated database, if any."""
    if not tenant.db_name:
        return None
    user = quote(tenant.db_user or '', safe='')
    password = quote(tenant.db_password or '', safe='')
    credentials = f"{user}:{password}@" if user else ''
    return f"postgresql://{credentials}{tenant.db_host or 'localhost'}/{tenant.db_name}"


class TenantClient:
    """Handle on one tenant database.

    Creating a client only registers a database alias with Django;
    nothing connects until the first query runs through :meth:`using`
    or :attr:`connection`.  A malformed connection string raises from
    ``dj_database_url`` at creation time, unwrapped.
    """

    def __init__(self, url: str):
        self.url = url
        self.alias = 'tenant_' + hashlib.sha1(url.encode('utf-8')).hexdigest()[:16]
        config = dj_database_url.parse(url, conn_max_age=settings.TENANT_DB_CONN_MAX_AGE)
        # ConnectionHandler.settings fills in the remaining defaults
        # (ATOMIC_REQUESTS, OPTIONS, TIME_ZONE...) only for aliases that
        # were present at startup, so apply them here.
        config.setdefault('ATOMIC_REQUESTS', False)
        config.setdefault('AUTOCOMMIT', True)
        config.setdefault('CONN_HEALTH_CHECKS', False)
        config.setdefault('OPTIONS', {})
        config.setdefault('TIME_ZONE', None)
        config.setdefault('TEST', {})
        connections.databases[self.alias] = config
        # wrappers that actually connected, from any thread
        self._opened = weakref.WeakSet()

    @property
    def connection(self):
        return connections[self.alias]

    def using(self, model: Type[models.Model]) -> models.QuerySet:
        return model.objects.using(self.alias)

    def close(self) -> None:
        """Close every connection opened through this client, in any thread."""
        for conn in list(self._opened):
            # wrappers are thread bound; closing one owned by a worker
            # thread needs sharing switched on for the call
            conn.inc_thread_sharing()
            try:
                conn.close()
            finally:
                conn.dec_thread_sharing()
        self._opened.clear()
        for conn in connections.all(initialized_only=True):
            if conn.alias == self.alias:
                del connections[self.alias]
        connections.databases.pop(self.alias, None)

    def __repr__(self) -> str:
        return f"<TenantClient {self.alias}>"


class TenantRegistry:
    """Connection string -> :class:`TenantClient` map without eviction."""

    def __init__(self):
        self._clients: Dict[str, TenantClient] = {}
        self._lock = threading.Lock()

    def get_client(self, url: str) -> TenantClient:
        client = self._clients.get(url)
        if client is not None:
            return client
        with self._lock:
            client = self._clients.get(url)
            if client is None:
                client = TenantClient(url)
                self._clients[url] = client
                logger.info('tenant client created alias=%s (%d registered)', client.alias, len(self._clients))
        return client

    def disconnect_all(self) -> int:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                client.close()
            except Exception:
                logger.exception('failed to close tenant client %s', client.alias)
        if clients:
            logger.info('disconnected %d tenant clients', len(clients))
        return len(clients)

    def client_for_alias(self, alias: str) -> Optional[TenantClient]:
        for client in list(self._clients.values()):
            if client.alias == alias:
                return client
        return None

    def __contains__(self, url: str) -> bool:
        return url in self._clients

    def __len__(self) -> int:
        return len(self._clients)


registry = TenantRegistry()


@receiver(connection_created)
def _remember_tenant_connection(sender, connection, **kwargs):
    client = registry.client_for_alias(connection.alias)
    if client is not None:
        client._opened.add(connection)


def get_tenant_client(url: str) -> TenantClient:
    return registry.get_client(url)


def disconnect_all_tenants() -> int:
    return registry.disconnect_all()


def tenant_db_alias(tenant: Optional[Tenant]) -> str:
    """Database alias holding ``tenant``'s clinical data."""
    if tenant is None:
        return MANAGEMENT_ALIAS
    url = tenant_connection_url(tenant)
    if not url:
        return MANAGEMENT_ALIAS
    return get_tenant_client(url).alias


def current_tenant(request) -> Optional[Tenant]:
    """Tenant of ``request``, resolved once per request.

    Must be called after authentication: with DRF that means from
    inside the view, since JWT users are only known there.
    """
    http_request = getattr(request, '_request', request)
    if not hasattr(http_request, '_cached_tenant'):
        http_request._cached_tenant = resolve_tenant(
            getattr(request, 'user', None), request.headers.get('X-Tenant-ID'),
        )
    return http_request._cached_tenant


def tenant_queryset(request, model: Type[models.Model]) -> models.QuerySet:
    """Clinical rows of the request's tenant.

    Requests without a resolved tenant see nothing.
    """
    tenant = current_tenant(request)
    qs = model.objects.using(tenant_db_alias(tenant))
    if tenant is None:
        return qs.none()
    return qs.filter(tenant_id=str(tenant.id))


def resolve_tenant(user, header_value: Optional[str] = None) -> Optional[Tenant]:
    """Tenant a request acts for.

    Regular users act for their own tenant.  Super admins have no
    tenant of their own and pick one with the ``X-Tenant-ID`` header.
    """
    if not (user and user.is_authenticated):
        return None
    if getattr(user, 'role', '') == 'super_admin':
        if not header_value:
            return None
        try:
            return Tenant.objects.filter(id=uuid.UUID(header_value)).first()
        except ValueError:
            return Tenant.objects.filter(slug=header_value).first()
    return getattr(user, 'tenant', None)
