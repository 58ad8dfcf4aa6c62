import re

import bleach
from rest_framework import serializers

from practice.models import (
    Appointment,
    Archive,
    Invoice,
    MedicalRecord,
    Patient,
    Prescription,
    TeleconsultSession,
    User,
)
from practice.services.clinical import compute_totals, room_url
from practice.services.tenancy import current_tenant

DOSAGE_RE = re.compile(r'^\d+\s?(mg|g|ml|UI|%|comprimé|gélule|cp)$')
PHONE_RE = r'^\+?[\d\s\-()]+$'
DATE_INPUTS = ['iso-8601', '%Y-%m-%dT%H:%M:%S.%fZ', '%Y-%m-%dT%H:%M:%SZ']


class CleanCharField(serializers.CharField):
    """CharField with markup stripped."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        return bleach.clean(value, tags=[], strip=True)


def _alias(data, **aliases):
    # accept legacy field names (e.g. ``motif`` for ``reason``)
    if not hasattr(data, 'get'):
        return data
    data = data.copy()
    for alias, name in aliases.items():
        if alias in data and name not in data:
            data[name] = data[alias]
    return data


class ListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False, default=20)
    q = serializers.CharField(max_length=64, required=False, allow_blank=True)
    status = serializers.CharField(max_length=32, required=False, allow_blank=True)
    patientId = serializers.IntegerField(min_value=1, required=False)


class TenantModelSerializer(serializers.ModelSerializer):
    """Writes through the tenant database alias given in the context.

    Expected context: ``using`` (database alias) and, for serializers
    referencing a patient, ``patients`` (the tenant's patient queryset).
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        field = self.fields.get('patientId')
        if field is not None and not field.read_only:
            field.queryset = self.context.get('patients', Patient.objects.none())

    def create(self, validated_data):
        manager = self.Meta.model._default_manager.db_manager(self.context.get('using', 'default'))
        return manager.create(**validated_data)


class PatientSerializer(TenantModelSerializer):
    firstName = CleanCharField(source='first_name', max_length=100)
    lastName = CleanCharField(source='last_name', max_length=100)
    name = serializers.CharField(source='full_name', read_only=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.RegexField(PHONE_RE, max_length=32, required=False, allow_blank=True,
                                   error_messages={'invalid': 'Invalid phone number'})
    dateOfBirth = serializers.DateField(source='date_of_birth', input_formats=DATE_INPUTS,
                                        required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=['M', 'F', 'Autre', ''], required=False)
    bloodType = serializers.ChoiceField(source='blood_type', choices=list(Patient.BLOOD_TYPES) + [''], required=False)
    allergies = serializers.ListField(child=CleanCharField(max_length=100), required=False)
    chronicDiseases = serializers.ListField(source='chronic_diseases', child=CleanCharField(max_length=100), required=False)
    address = CleanCharField(max_length=255, required=False, allow_blank=True)
    status = serializers.CharField(max_length=32, required=False)
    lastVisit = serializers.DateField(source='last_visit', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    accountId = serializers.CharField(source='account_id', max_length=36, required=False, allow_blank=True)

    class Meta:
        model = Patient
        fields = ['id', 'firstName', 'lastName', 'name', 'email', 'phone', 'dateOfBirth', 'gender',
                  'bloodType', 'allergies', 'chronicDiseases', 'address', 'status', 'lastVisit', 'createdAt',
                  'accountId']

    def validate_accountId(self, value):
        """Only a patient account of the same practice can be linked."""
        if not value:
            return ''
        request = self.context.get('request')
        tenant = current_tenant(request) if request is not None else None
        accounts = User.objects.filter(role=User.ROLE_PATIENT, tenant=tenant)
        if tenant is None or not value.isdigit() or not accounts.filter(pk=value).exists():
            raise serializers.ValidationError('Unknown patient account')
        return str(value)


class AppointmentSerializer(TenantModelSerializer):
    patientId = serializers.PrimaryKeyRelatedField(source='patient', queryset=Patient.objects.none())
    patientName = serializers.CharField(source='patient.full_name', read_only=True)
    reason = CleanCharField(max_length=500)
    type = CleanCharField(max_length=64, required=False)
    status = serializers.ChoiceField(choices=[c[0] for c in Appointment.STATUS_CHOICES], required=False)
    location = CleanCharField(max_length=128, required=False, allow_blank=True)
    provider = CleanCharField(max_length=128, required=False, allow_blank=True)
    notes = CleanCharField(max_length=2000, required=False, allow_blank=True)

    class Meta:
        model = Appointment
        fields = ['id', 'patientId', 'patientName', 'start', 'end', 'reason', 'type', 'status',
                  'location', 'provider', 'notes']

    def to_internal_value(self, data):
        return super().to_internal_value(_alias(data, motif='reason'))

    def validate(self, attrs):
        start = attrs.get('start', getattr(self.instance, 'start', None))
        end = attrs.get('end', getattr(self.instance, 'end', None))
        if start and end and end <= start:
            raise serializers.ValidationError({'end': 'End must be after start'})
        return attrs


class MedicalRecordSerializer(TenantModelSerializer):
    patientId = serializers.PrimaryKeyRelatedField(source='patient', queryset=Patient.objects.none())
    patientName = serializers.CharField(source='patient.full_name', read_only=True)
    title = CleanCharField(max_length=200)
    content = CleanCharField(max_length=50000)
    type = CleanCharField(max_length=100, required=False, allow_blank=True)
    status = serializers.CharField(max_length=16, required=False)
    provider = CleanCharField(max_length=128, required=False, allow_blank=True)
    attachments = serializers.ListField(child=serializers.URLField(), required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = MedicalRecord
        fields = ['id', 'patientId', 'patientName', 'title', 'content', 'type', 'status',
                  'provider', 'attachments', 'createdAt']


class InvoiceItemSerializer(serializers.Serializer):
    description = CleanCharField(max_length=255)
    qty = serializers.IntegerField(min_value=1, max_value=1000, default=1)
    price = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, max_value=999999.99)
    total = serializers.FloatField(read_only=True)

    def to_internal_value(self, data):
        return super().to_internal_value(_alias(data, quantity='qty', unitPrice='price'))


class InvoiceSerializer(TenantModelSerializer):
    patientId = serializers.PrimaryKeyRelatedField(source='patient', queryset=Patient.objects.none())
    patientName = serializers.CharField(source='patient.full_name', read_only=True)
    items = serializers.ListField(child=InvoiceItemSerializer(), min_length=1)
    taxRate = serializers.DecimalField(source='tax_rate', max_digits=5, decimal_places=2,
                                       min_value=0, max_value=100, default=20)
    paymentMethod = CleanCharField(source='payment_method', max_length=32, required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=[c[0] for c in Invoice.STATUS_CHOICES], required=False)
    notes = CleanCharField(max_length=2000, required=False, allow_blank=True)
    date = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Invoice
        fields = ['id', 'number', 'patientId', 'patientName', 'date', 'items', 'taxRate', 'subtotal',
                  'tax', 'total', 'paymentMethod', 'status', 'notes']
        read_only_fields = ['number', 'subtotal', 'tax', 'total']

    def create(self, validated_data):
        lines, subtotal, tax, total = compute_totals(validated_data['items'], validated_data.get('tax_rate', 20))
        validated_data.update(items=lines, subtotal=subtotal, tax=tax, total=total)
        return super().create(validated_data)

    def update(self, instance, validated_data):
        if 'items' in validated_data or 'tax_rate' in validated_data:
            lines, subtotal, tax, total = compute_totals(validated_data.get('items', instance.items),
                                                         validated_data.get('tax_rate', instance.tax_rate))
            validated_data.update(items=lines, subtotal=subtotal, tax=tax, total=total)
        return super().update(instance, validated_data)


class MedicationSerializer(serializers.Serializer):
    name = CleanCharField(max_length=255)
    dosage = serializers.CharField(max_length=32)
    frequency = CleanCharField(max_length=100)
    duration = CleanCharField(max_length=50)
    quantity = serializers.IntegerField(min_value=1, max_value=1000, default=1)
    instructions = CleanCharField(max_length=500, required=False, allow_blank=True)

    def validate_dosage(self, v):
        v = v.strip()
        if not DOSAGE_RE.match(v):
            raise serializers.ValidationError('Invalid dosage format (e.g. 500mg, 10ml)')
        return v


class PrescriptionSerializer(TenantModelSerializer):
    patientId = serializers.PrimaryKeyRelatedField(source='patient', queryset=Patient.objects.none())
    patientName = serializers.CharField(source='patient.full_name', read_only=True)
    medications = serializers.ListField(child=MedicationSerializer(), min_length=1, max_length=20)
    notes = CleanCharField(max_length=2000, required=False, allow_blank=True)
    status = serializers.CharField(max_length=16, required=False)
    date = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Prescription
        fields = ['id', 'patientId', 'patientName', 'date', 'medications', 'notes', 'status', 'prescriber']
        read_only_fields = ['prescriber']


class TeleconsultSerializer(TenantModelSerializer):
    patientId = serializers.PrimaryKeyRelatedField(source='patient', queryset=Patient.objects.none())
    patientName = serializers.CharField(source='patient.full_name', read_only=True)
    scheduledDate = serializers.DateTimeField(source='scheduled_date')
    reason = CleanCharField(max_length=500)
    notes = CleanCharField(max_length=2000, required=False, allow_blank=True)
    roomUrl = serializers.URLField(source='room_url', max_length=512, required=False, allow_blank=True)
    doctorId = serializers.CharField(source='doctor_id', read_only=True)

    class Meta:
        model = TeleconsultSession
        fields = ['id', 'patientId', 'patientName', 'scheduledDate', 'reason', 'notes', 'status',
                  'roomUrl', 'doctorId']
        read_only_fields = ['status']

    def to_internal_value(self, data):
        return super().to_internal_value(_alias(data, motif='reason'))

    def create(self, validated_data):
        if not validated_data.get('room_url'):
            validated_data['room_url'] = room_url(validated_data['patient'])
        return super().create(validated_data)


class TeleconsultStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c[0] for c in TeleconsultSession.STATUS_CHOICES])


class ArchiveSerializer(TenantModelSerializer):
    patientName = CleanCharField(source='patient_name', max_length=200)
    type = CleanCharField(max_length=100)
    reason = CleanCharField(max_length=255, required=False, allow_blank=True)
    size = serializers.CharField(max_length=32, required=False, allow_blank=True)
    date = serializers.DateField(input_formats=DATE_INPUTS, required=False, allow_null=True)

    class Meta:
        model = Archive
        fields = ['id', 'patientName', 'type', 'reason', 'size', 'date']
