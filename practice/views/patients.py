"""
Patient management views.

Doctors, admins and assistants of a practice list and search its
patients; doctors and admins register and edit them and only admins
delete them.  Every access to patient data is audited.
"""
from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from practice.models import Patient
from practice.permissions import HasPermission, HasTenant
from practice.serializers.clinical import PatientSerializer
from practice.services.audit import audited
from practice.services.plans import within_limit
from practice.services.tenancy import current_tenant, tenant_queryset
from practice.views.base import create_response, delete_response, get_object, list_response, update_response

NAMESPACE = 'patients'


def _search(qs, term):
    return qs.filter(
        Q(first_name__icontains=term) | Q(last_name__icontains=term)
        | Q(email__icontains=term) | Q(phone__icontains=term)
    )


@audited('PATIENT_LIST')
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasPermission(GET='patients:view', POST='patients:create'), HasTenant])
def patients(request):
    if request.method == 'GET':
        return list_response(request, NAMESPACE, Patient, PatientSerializer, search=_search,
                             order_by=('last_name', 'first_name'))

    tenant = current_tenant(request)
    if not within_limit(tenant.plan, 'patients', tenant_queryset(request, Patient).count()):
        return Response({'ok': False, 'error': {'code': 'plan_limit', 'message': 'Patient limit of the current plan reached'}},
                        status=403)
    return create_response(request, NAMESPACE, PatientSerializer)


@audited('PATIENT_ACCESS')
@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([
    IsAuthenticated,
    HasPermission(GET='patients:view', PUT='patients:edit', DELETE='patients:delete'),
    HasTenant,
])
def patient_detail(request, pk):
    patient = get_object(request, Patient, pk)
    if request.method == 'GET':
        return Response({'ok': True, 'data': PatientSerializer(patient).data})
    if request.method == 'PUT':
        return update_response(request, NAMESPACE, patient, PatientSerializer)
    return delete_response(request, NAMESPACE, patient)
