"""
Input validation and server-computed fields of the clinical API.
"""
from decimal import Decimal

import pytest
from django.utils import timezone

from practice.models import Invoice, Patient, Prescription, TeleconsultSession
from practice.services.clinical import compute_totals, next_invoice_number, paginate, room_url

pytestmark = pytest.mark.django_db


@pytest.fixture
def patient(tenant, make_patient):
    return make_patient(tenant, 'Sarah', 'Johnson')


@pytest.fixture
def api(doctor, client_for):
    return client_for(doctor)


def _medication(**overrides):
    med = {'name': 'Paracetamol', 'dosage': '500mg', 'frequency': '3x/day', 'duration': '5 days'}
    med.update(overrides)
    return med


# ---------------------------------------------------------------------
# Prescriptions
# ---------------------------------------------------------------------
@pytest.mark.parametrize('dosage', ['500mg', '10 ml', '1g', '2 comprimé', '100UI', '5%'])
def test_valid_dosages(api, patient, dosage):
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': [_medication(dosage=dosage)]},
                 format='json')
    assert r.status_code == 201, r.data


@pytest.mark.parametrize('dosage', ['lots', '500', 'mg500', '500 mgs'])
def test_invalid_dosages(api, patient, dosage):
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': [_medication(dosage=dosage)]},
                 format='json')
    assert r.status_code == 400
    assert 'medications' in r.data['error']['message']


def test_prescription_needs_between_one_and_twenty_medications(api, patient):
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': []}, format='json')
    assert r.status_code == 400
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': [_medication()] * 21},
                 format='json')
    assert r.status_code == 400
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': [_medication()] * 20},
                 format='json')
    assert r.status_code == 201


def test_prescription_defaults_and_prescriber(api, patient, doctor):
    doctor.first_name, doctor.last_name = 'Gregory', 'House'
    doctor.save()
    r = api.post('/api/prescriptions', {'patientId': patient.id, 'medications': [_medication()]}, format='json')
    assert r.status_code == 201
    rx = Prescription.objects.get(pk=r.data['data']['id'])
    assert rx.medications[0]['quantity'] == 1
    assert rx.prescriber == 'Gregory House'


def test_assistant_cannot_prescribe(make_user, tenant, client_for, patient):
    assistant = make_user('front_desk', role='assistant', tenant=tenant)
    r = client_for(assistant).post('/api/prescriptions',
                                   {'patientId': patient.id, 'medications': [_medication()]}, format='json')
    assert r.status_code == 403


# ---------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------
def test_appointment_must_end_after_start(api, patient):
    r = api.post('/api/appointments', {
        'patientId': patient.id, 'start': '2030-01-16T10:00:00Z', 'end': '2030-01-16T09:30:00Z', 'reason': 'Suivi',
    }, format='json')
    assert r.status_code == 400
    assert 'end' in r.data['error']['message']


def test_appointment_accepts_motif_alias(api, patient):
    r = api.post('/api/appointments', {
        'patientId': patient.id, 'start': '2030-01-16T09:00:00Z', 'end': '2030-01-16T09:30:00Z', 'motif': 'Suivi',
    }, format='json')
    assert r.status_code == 201
    assert r.data['data']['reason'] == 'Suivi'
    assert r.data['data']['patientName'] == 'Sarah Johnson'


def test_appointment_partial_update_keeps_interval_valid(api, patient, tenant):
    r = api.post('/api/appointments', {
        'patientId': patient.id, 'start': '2030-01-16T09:00:00Z', 'end': '2030-01-16T09:30:00Z', 'reason': 'Suivi',
    }, format='json')
    pk = r.data['data']['id']
    assert api.put(f'/api/appointments/{pk}', {'status': 'confirmed'}, format='json').data['data']['status'] == 'confirmed'
    r = api.put(f'/api/appointments/{pk}', {'end': '2030-01-16T08:00:00Z'}, format='json')
    assert r.status_code == 400
    assert api.delete(f'/api/appointments/{pk}').data == {'ok': True, 'id': pk}


# ---------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------
def test_markup_is_stripped(api):
    r = api.post('/api/patients', {
        'firstName': '<b>Emma</b>', 'lastName': '<script>x</script>Williams', 'address': '<i>1 rue</i> du Parc',
    }, format='json')
    assert r.status_code == 201
    p = Patient.objects.get(pk=r.data['data']['id'])
    assert p.first_name == 'Emma'
    assert '<' not in p.last_name
    assert p.address == '1 rue du Parc'


def test_patient_field_validation(api):
    r = api.post('/api/patients', {'firstName': 'Emma', 'lastName': 'W', 'phone': 'call me', 'gender': 'X'},
                 format='json')
    assert r.status_code == 400
    errors = r.data['error']['message']
    assert 'phone' in errors and 'gender' in errors


def test_patient_plan_limit(api, tenant, make_patient):
    tenant.plan.limits = {'patients': 1}
    tenant.plan.save()
    make_patient(tenant)
    r = api.post('/api/patients', {'firstName': 'Emma', 'lastName': 'Williams'}, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'plan_limit'


def test_patient_search_and_pagination(api, tenant, make_patient):
    for i in range(5):
        make_patient(tenant, f'Pat{i}', 'Martin')
    make_patient(tenant, 'Lucie', 'Bernard')
    r = api.get('/api/patients', {'q': 'martin', 'pageSize': 2, 'page': 3})
    assert r.status_code == 200
    assert r.data['pagination'] == {'total': 5, 'page': 3, 'pageSize': 2, 'pages': 3}
    assert len(r.data['data']) == 1
    assert api.get('/api/patients', {'pageSize': 500}).status_code == 400


def test_only_admins_delete_patients(api, admin_user, client_for, patient):
    assert api.delete(f'/api/patients/{patient.id}').status_code == 403
    assert client_for(admin_user).delete(f'/api/patients/{patient.id}').status_code == 200
    assert not Patient.objects.filter(pk=patient.id).exists()


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
def test_invoice_totals_are_computed_server_side(api, patient):
    r = api.post('/api/billing', {
        'patientId': patient.id,
        'items': [
            {'description': 'Consultation', 'quantity': 1, 'unitPrice': '50.00'},
            {'description': 'ECG', 'qty': 2, 'price': '25.005'},
        ],
        'taxRate': 20,
        'total': 1,
    }, format='json')
    # prices carry at most two decimals
    assert r.status_code == 400

    r = api.post('/api/billing', {
        'patientId': patient.id,
        'items': [
            {'description': 'Consultation', 'quantity': 1, 'unitPrice': '50.00'},
            {'description': 'ECG', 'qty': 2, 'price': '25.50'},
        ],
        'taxRate': 20,
        'total': 1,
    }, format='json')
    assert r.status_code == 201
    body = r.json()['data']
    assert body['subtotal'] == 101.0
    assert body['tax'] == 20.2
    assert body['total'] == 121.2
    assert body['items'][1]['total'] == 51.0


def test_invoice_numbers_increase_per_year(api, patient):
    year = timezone.now().year
    payload = {'patientId': patient.id, 'items': [{'description': 'Consultation', 'price': '50'}]}
    first = api.post('/api/billing', payload, format='json').data['data']['number']
    second = api.post('/api/billing', payload, format='json').data['data']['number']
    assert first == f'INV-{year}-001'
    assert second == f'INV-{year}-002'


def test_admin_edits_invoice_and_totals_follow(api, patient, admin_user, client_for):
    created = api.post('/api/billing', {'patientId': patient.id,
                                        'items': [{'description': 'Consultation', 'price': '50'}]},
                       format='json').data['data']
    url = f"/api/billing/{created['id']}"
    # doctors create invoices but only admins edit them
    assert api.put(url, {'status': 'paid'}, format='json').status_code == 403

    admin = client_for(admin_user)
    r = admin.put(url, {'status': 'paid', 'paymentMethod': 'card'}, format='json')
    assert r.status_code == 200
    assert r.json()['data']['status'] == 'paid'
    assert r.json()['data']['total'] == 60.0

    r = admin.put(url, {'taxRate': 10, 'items': [{'description': 'Consultation', 'qty': 2, 'price': '40'}]},
                  format='json')
    body = r.json()['data']
    assert (body['subtotal'], body['tax'], body['total']) == (80.0, 8.0, 88.0)
    assert body['number'] == created['number']
    invoice = Invoice.objects.get(pk=created['id'])
    assert invoice.status == 'paid'
    assert invoice.total == Decimal('88.00')


def test_invoice_numbers_are_per_tenant(tenant, other_tenant, make_patient):
    p = make_patient(tenant)
    q = make_patient(other_tenant)
    Invoice.objects.create(tenant_id=str(tenant.id), patient=p, number='INV-2031-007')
    Invoice.objects.create(tenant_id=str(other_tenant.id), patient=q, number='INV-2031-041')
    assert next_invoice_number(Invoice.objects.filter(tenant_id=str(tenant.id)), 2031) == 'INV-2031-008'
    assert next_invoice_number(Invoice.objects.none(), 2031) == 'INV-2031-001'


def test_compute_totals_rounding():
    lines, subtotal, tax, total = compute_totals([{'description': 'x', 'qty': 3, 'price': Decimal('0.35')}], 5.5)
    assert subtotal == Decimal('1.05')
    assert tax == Decimal('0.06')
    assert total == Decimal('1.11')
    assert lines[0]['qty'] == 3


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def test_paginate_clamps(tenant, make_patient):
    for i in range(3):
        make_patient(tenant, f'P{i}')
    items, meta = paginate(Patient.objects.order_by('id'), page=0, page_size=1000)
    assert len(items) == 3
    assert meta == {'total': 3, 'page': 1, 'pageSize': 100, 'pages': 1}


def test_teleconsult_gets_a_room(api, patient, doctor):
    r = api.post('/api/teleconsult', {
        'patientId': patient.id, 'scheduledDate': '2030-01-16T09:00:00Z', 'reason': 'Suivi',
    }, format='json')
    assert r.status_code == 201
    session = TeleconsultSession.objects.get(pk=r.data['data']['id'])
    assert session.room_url.startswith('https://meet.jit.si/Doctic-Sarah-Johnson-')
    assert session.doctor_id == str(doctor.pk)


def test_room_url_without_patient():
    assert room_url().startswith('https://meet.jit.si/Doctic-')
    assert room_url() != room_url()


def test_archive_date_formats(api):
    r = api.post('/api/archives', {
        'patientName': 'Jean Martin', 'type': 'Radiographie', 'date': '2024-01-15T08:00:00.000Z',
    }, format='json')
    assert r.status_code == 201
    assert r.data['data']['date'] == '2024-01-15'
