from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from practice.models import (
    Appointment,
    Archive,
    Invoice,
    MedicalRecord,
    Prescription,
    TeleconsultSession,
)
from practice.permissions import HasPermission, HasTenant
from practice.serializers.clinical import (
    AppointmentSerializer,
    ArchiveSerializer,
    InvoiceSerializer,
    MedicalRecordSerializer,
    PrescriptionSerializer,
    TeleconsultSerializer,
    TeleconsultStatusSerializer,
)
from practice.services import response_cache
from practice.services.audit import audited
from practice.services.clinical import broadcast_teleconsult_status, next_invoice_number, teleconsult_scope
from practice.services.tenancy import tenant_queryset
from practice.views.base import (
    ANALYTICS,
    create_response,
    delete_response,
    get_object,
    list_response,
    update_response,
)


def _by_patient_name(qs, term):
    return qs.filter(Q(patient__first_name__icontains=term) | Q(patient__last_name__icontains=term))


def _provider(user) -> str:
    return user.get_full_name() or user.username


# ---------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------
@audited('APPOINTMENT_LIST')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='appointments:view', POST='appointments:create'), HasTenant])
def appointments(request):
    if request.method == 'GET':
        return list_response(request, 'appointments', Appointment, AppointmentSerializer,
                             search=_by_patient_name, order_by=('start',), select_related=('patient',))
    return create_response(request, 'appointments', AppointmentSerializer)


@audited('APPOINTMENT_UPDATE')
@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated, HasPermission('appointments:edit'), HasTenant])
def appointment_detail(request, pk):
    appointment = get_object(request, Appointment, pk, select_related=('patient',))
    if request.method == 'PUT':
        return update_response(request, 'appointments', appointment, AppointmentSerializer)
    return delete_response(request, 'appointments', appointment)


# ---------------------------------------------------------------------
# Medical records and archives
# ---------------------------------------------------------------------
@audited('RECORD_ACCESS')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='records:view', POST='records:write'), HasTenant])
def records(request):
    if request.method == 'GET':
        return list_response(request, 'records', MedicalRecord, MedicalRecordSerializer,
                             search=_by_patient_name, select_related=('patient',))
    return create_response(request, 'records', MedicalRecordSerializer, provider=_provider(request.user))


@audited('ARCHIVE_ACCESS')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='records:view', POST='records:write'), HasTenant])
def archives(request):
    if request.method == 'GET':
        return list_response(request, 'archives', Archive, ArchiveSerializer,
                             search=lambda qs, term: qs.filter(patient_name__icontains=term))
    return create_response(request, 'archives', ArchiveSerializer)


# ---------------------------------------------------------------------
# Billing (patient invoices)
# ---------------------------------------------------------------------
@audited('INVOICE_ACCESS')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='billing:view', POST='billing:create'), HasTenant])
def billing(request):
    if request.method == 'GET':
        return list_response(request, 'billing', Invoice, InvoiceSerializer,
                             search=_by_patient_name, select_related=('patient',))
    number = next_invoice_number(tenant_queryset(request, Invoice))
    return create_response(request, 'billing', InvoiceSerializer, number=number)


@audited('INVOICE_UPDATE')
@api_view(['PUT'])
@permission_classes([IsAuthenticated, HasPermission('billing:edit'), HasTenant])
def invoice_detail(request, pk):
    invoice = get_object(request, Invoice, pk, select_related=('patient',))
    return update_response(request, 'billing', invoice, InvoiceSerializer)


# ---------------------------------------------------------------------
# Prescriptions
# ---------------------------------------------------------------------
@audited('PRESCRIPTION_ACCESS')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='prescriptions:view', POST='prescriptions:create'), HasTenant])
def prescriptions(request):
    if request.method == 'GET':
        return list_response(request, 'prescriptions', Prescription, PrescriptionSerializer,
                             search=_by_patient_name, select_related=('patient',))
    return create_response(request, 'prescriptions', PrescriptionSerializer, prescriber=_provider(request.user))


# ---------------------------------------------------------------------
# Teleconsultation
# ---------------------------------------------------------------------
@audited('TELECONSULT_ACCESS')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='teleconsult:view', POST='teleconsult:start'), HasTenant])
def teleconsult(request):
    if request.method == 'GET':
        return list_response(request, 'teleconsult', TeleconsultSession, TeleconsultSerializer,
                             order_by=('scheduled_date',), select_related=('patient',),
                             restrict=teleconsult_scope(request.user))
    return create_response(request, 'teleconsult', TeleconsultSerializer, doctor_id=str(request.user.pk))


@audited('TELECONSULT_STATUS')
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasPermission('teleconsult:start'), HasTenant])
def teleconsult_status(request, pk):
    session = get_object(request, TeleconsultSession, pk, select_related=('patient',))
    s = TeleconsultStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    session.status = s.validated_data['status']
    session.save(update_fields=['status', 'updated_at'])
    response_cache.invalidate(session.tenant_id, 'teleconsult', ANALYTICS)
    broadcast_teleconsult_status(session)
    return Response({'ok': True, 'data': TeleconsultSerializer(session).data})
