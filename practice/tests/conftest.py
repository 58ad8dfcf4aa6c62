import hashlib
import hmac
import json
import time

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from practice.models import Patient, Plan, Tenant, User


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttles, revocations and cached responses all live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def plan(db):
    return Plan.objects.create(id='pro', name='Pro', price_monthly=79, price_yearly=790,
                               limits={'patients': -1, 'users': 5}, popular=True)


@pytest.fixture
def tenant(db, plan):
    return Tenant.objects.create(name='Cabinet du Parc', slug='cabinet-parc', country='FR',
                                 plan=plan, admin_email='admin@parc.example')


@pytest.fixture
def other_tenant(db, plan):
    return Tenant.objects.create(name='Centre Riviera', slug='centre-riviera', country='CI', plan=plan)


@pytest.fixture
def make_user(db):
    def _make(username, role='doctor', tenant=None, password='P@ssw0rd-123', **extra):
        return User.objects.create_user(username=username, password=password, role=role, tenant=tenant, **extra)
    return _make


@pytest.fixture
def doctor(make_user, tenant):
    return make_user('dr_house', role='doctor', tenant=tenant, email='house@parc.example')


@pytest.fixture
def admin_user(make_user, tenant):
    return make_user('admin_parc', role='admin', tenant=tenant)


@pytest.fixture
def super_admin(make_user):
    return make_user('root', role='super_admin')


@pytest.fixture
def client_for():
    def _client(user):
        c = APIClient()
        c.force_authenticate(user)
        return c
    return _client


@pytest.fixture
def make_patient():
    def _make(tenant, first='Sarah', last='Johnson', **extra):
        return Patient.objects.create(tenant_id=str(tenant.id), first_name=first, last_name=last, **extra)
    return _make


@pytest.fixture
def stripe_signature():
    """Build a ``Stripe-Signature`` header the way Stripe signs deliveries."""
    def _sign(payload, secret, timestamp=None):
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        t = int(timestamp or time.time())
        sig = hmac.new(secret.encode(), f'{t}.{payload}'.encode(), hashlib.sha256).hexdigest()
        return payload, f't={t},v1={sig}'
    return _sign
