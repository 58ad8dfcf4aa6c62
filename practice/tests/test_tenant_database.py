"""
Clinical data living in a dedicated tenant database.

Tenant aliases are registered while the test runs.  Django's test case
guard refuses connections to aliases it did not know when the case was
set up, so these tests run without the ``django_db`` mark: they open the
test database through ``django_db_blocker`` and remove the management
rows they create.
"""
import threading
from io import StringIO

import pytest
from django.core.management import call_command
from django.db import connections
from rest_framework.test import APIClient

from practice.models import AuditLog, Patient, Plan, Tenant, User
from practice.services import tenancy


@pytest.fixture
def management_db(django_db_setup, django_db_blocker):
    with django_db_blocker.unblock():
        try:
            yield
        finally:
            tenancy.disconnect_all_tenants()
            for model in (AuditLog, User, Tenant, Plan):
                model.objects.all().delete()


@pytest.fixture
def tenant_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cab_parc.db'}"


@pytest.fixture
def dedicated_tenant(management_db, tenant_url, monkeypatch):
    monkeypatch.setattr(tenancy, 'tenant_connection_url', lambda t: tenant_url if t.db_name else '')
    monkeypatch.setattr('practice.management.commands.verify_tenants.tenant_connection_url',
                        lambda t: tenant_url)
    call_command('migrate', database=tenancy.get_tenant_client(tenant_url).alias, run_syncdb=True, verbosity=0)

    plan = Plan.objects.create(id='pro', name='Pro', price_monthly=79, limits={'patients': -1})
    return Tenant.objects.create(name='Cabinet du Parc', slug='cabinet-parc', plan=plan, db_name='cab_parc')


@pytest.fixture
def api(dedicated_tenant):
    doctor = User.objects.create_user(username='dr_house', password='P@ssw0rd-123', role='doctor',
                                      tenant=dedicated_tenant)
    c = APIClient()
    c.force_authenticate(doctor)
    return c


def test_clinical_rows_go_to_the_tenant_database(api, dedicated_tenant, tenant_url):
    alias = tenancy.get_tenant_client(tenant_url).alias

    r = api.post('/api/patients', {'firstName': 'Emma', 'lastName': 'Williams'}, format='json')
    assert r.status_code == 201
    assert Patient.objects.using(alias).filter(tenant_id=str(dedicated_tenant.id)).count() == 1
    assert not Patient.objects.using('default').exists()

    r = api.get('/api/patients')
    assert r.status_code == 200
    assert [p['name'] for p in r.data['data']] == ['Emma Williams']

    patient_id = r.data['data'][0]['id']
    r = api.post('/api/appointments', {'patientId': patient_id, 'start': '2026-03-02T09:00:00Z',
                                       'end': '2026-03-02T09:30:00Z', 'reason': 'Bilan'}, format='json')
    assert r.status_code == 201
    assert r.data['data']['patientName'] == 'Emma Williams'
    # audit rows stay in the management database
    assert AuditLog.objects.using('default').filter(action='PATIENT_LIST').count() == 2


def test_verify_tenants_pings_and_disconnects(dedicated_tenant):
    out = StringIO()
    call_command('verify_tenants', '--ping', stdout=out, stderr=StringIO())
    output = out.getvalue()
    assert 'management database reachable' in output
    assert 'ok: cabinet-parc -> tenant_' in output
    assert '1 tenant client(s) disconnected' in output
    assert len(tenancy.registry) == 0
    assert not [alias for alias in connections.databases if alias.startswith('tenant_')]


def test_disconnect_closes_connections_of_other_threads(dedicated_tenant, tenant_url):
    alias = tenancy.get_tenant_client(tenant_url).alias
    opened = []

    def worker():
        conn = connections[alias]
        with conn.cursor() as c:
            c.execute('SELECT 1')
        opened.append(conn)

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    assert opened[0].connection is not None

    tenancy.disconnect_all_tenants()
    assert opened[0].connection is None
    assert alias not in connections.databases
