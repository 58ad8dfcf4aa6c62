"""
Tenant isolation of the clinical API: a practice only ever sees and
touches its own rows, whatever ids the client sends.
"""
import pytest

from practice.models import Appointment, Patient

pytestmark = pytest.mark.django_db


@pytest.fixture
def two_practices(tenant, other_tenant, make_user, make_patient):
    own = make_patient(tenant, 'Sarah', 'Johnson')
    foreign = make_patient(other_tenant, 'Jean', 'Martin')
    other_doctor = make_user('dr_other', role='doctor', tenant=other_tenant)
    return own, foreign, other_doctor


def test_list_only_returns_own_patients(doctor, client_for, two_practices, tenant):
    own, foreign, _ = two_practices
    r = client_for(doctor).get('/api/patients')
    assert r.status_code == 200
    assert r.data['tenantId'] == str(tenant.id)
    ids = [p['id'] for p in r.data['data']]
    assert ids == [own.id]
    assert r.data['pagination']['total'] == 1


def test_foreign_patient_is_not_found(doctor, client_for, two_practices):
    _, foreign, _ = two_practices
    c = client_for(doctor)
    assert c.get(f'/api/patients/{foreign.id}').status_code == 404
    assert c.put(f'/api/patients/{foreign.id}', {'firstName': 'X'}, format='json').status_code == 404
    assert Patient.objects.get(pk=foreign.id).first_name == 'Jean'


def test_cannot_book_appointment_for_foreign_patient(doctor, client_for, two_practices):
    _, foreign, _ = two_practices
    r = client_for(doctor).post('/api/appointments', {
        'patientId': foreign.id,
        'start': '2030-01-16T09:00:00Z',
        'end': '2030-01-16T09:30:00Z',
        'reason': 'Check-up',
    }, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'validation_error'
    assert not Appointment.objects.exists()


def test_created_rows_carry_the_callers_tenant(doctor, client_for, tenant):
    r = client_for(doctor).post('/api/patients', {'firstName': 'Emma', 'lastName': 'Williams'}, format='json')
    assert r.status_code == 201
    assert Patient.objects.get(pk=r.data['data']['id']).tenant_id == str(tenant.id)


def test_tenant_id_in_payload_is_ignored(doctor, client_for, tenant, other_tenant):
    r = client_for(doctor).post('/api/patients', {
        'firstName': 'Emma', 'lastName': 'Williams', 'tenantId': str(other_tenant.id), 'tenant_id': str(other_tenant.id),
    }, format='json')
    assert r.status_code == 201
    assert Patient.objects.get(pk=r.data['data']['id']).tenant_id == str(tenant.id)


def test_super_admin_picks_tenant_with_header(super_admin, client_for, two_practices, other_tenant):
    _, foreign, _ = two_practices
    c = client_for(super_admin)
    r = c.get('/api/patients', HTTP_X_TENANT_ID=str(other_tenant.id))
    assert r.status_code == 200
    assert [p['id'] for p in r.data['data']] == [foreign.id]
    # without a tenant there is no clinical data to act on
    assert c.get('/api/patients').status_code == 403


def test_user_without_tenant_is_refused(make_user, client_for):
    loner = make_user('loner', role='doctor')
    r = client_for(loner).get('/api/patients')
    assert r.status_code == 403
