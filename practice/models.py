"""
Database models for the Doctic Care backend.

Two families of models live here.  The management models (plans,
tenants, users, subscriptions, SaaS invoices, audit log) always sit in
the management database.  The clinical models carry a ``tenant_id``
and are read and written through
:func:`practice.services.tenancy.tenant_queryset`, which targets the
tenant's dedicated database when it has one.  Clinical rows therefore
never hold foreign keys to management rows.
"""
from __future__ import annotations

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models


# ---------------------------------------------------------------------------
# Management database
# ---------------------------------------------------------------------------

class Plan(models.Model):
    """A SaaS plan offered to cabinets.

    ``limits`` holds ``patients``, ``users``, ``storageGB`` and
    ``aiRequests``; ``-1`` means unlimited.
    """
    id = models.SlugField(max_length=32, primary_key=True)
    name = models.CharField(max_length=64)
    description = models.CharField(max_length=255, blank=True)
    price_monthly = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    price_yearly = models.DecimalField(max_digits=9, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='EUR')
    limits = models.JSONField(default=dict, blank=True)
    features = models.JSONField(default=dict, blank=True)
    popular = models.BooleanField(default=False)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class Tenant(models.Model):
    """One customer organisation (a medical cabinet).

    When ``db_name`` is set the tenant's clinical data lives in its own
    database; otherwise it shares the management database and is
    isolated by ``tenant_id`` filtering alone.
    """
    STATUS_ACTIVE = 'active'
    STATUS_GRACE = 'grace'
    STATUS_LIMITED = 'limited'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'active'),
        (STATUS_GRACE, 'grace'),
        (STATUS_LIMITED, 'limited'),
        (STATUS_SUSPENDED, 'suspended'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=64, unique=True)
    country = models.CharField(max_length=2, blank=True)
    plan = models.ForeignKey(Plan, null=True, blank=True, on_delete=models.SET_NULL, related_name='tenants')
    subscription_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    admin_email = models.EmailField(blank=True)
    stripe_customer_id = models.CharField(max_length=64, blank=True, db_index=True)

    db_name = models.CharField(max_length=128, blank=True)
    db_user = models.CharField(max_length=128, blank=True)
    db_password = models.CharField(max_length=255, blank=True)
    db_host = models.CharField(max_length=255, blank=True, default='localhost')

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.slug})"


class User(AbstractUser):
    """Custom user model with a role and a tenant binding."""
    ROLE_PATIENT = 'patient'
    ROLE_DOCTOR = 'doctor'
    ROLE_ADMIN = 'admin'
    ROLE_ASSISTANT = 'assistant'
    ROLE_SUPER_ADMIN = 'super_admin'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_ASSISTANT, 'Assistant'),
        (ROLE_SUPER_ADMIN, 'Super Administrator'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_DOCTOR)
    tenant = models.ForeignKey(Tenant, null=True, blank=True, on_delete=models.SET_NULL, related_name='users')
    email = models.EmailField(unique=True, null=True, blank=True)
    google_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    avatar = models.URLField(max_length=512, blank=True)
    email_verified = models.BooleanField(default=False)

    def save(self, *args, **kwargs):
        # create_user() normalises a missing email to '', which would
        # collide on the unique index
        if not self.email:
            self.email = None
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Subscription(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_PAST_DUE = 'past_due'
    STATUS_CANCELLED = 'cancelled'
    STATUS_TRIALING = 'trialing'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'active'),
        (STATUS_PAST_DUE, 'past_due'),
        (STATUS_CANCELLED, 'cancelled'),
        (STATUS_TRIALING, 'trialing'),
    )
    CYCLE_CHOICES = (('monthly', 'monthly'), ('yearly', 'yearly'))

    tenant = models.OneToOneField(Tenant, on_delete=models.CASCADE, related_name='subscription')
    plan = models.ForeignKey(Plan, null=True, blank=True, on_delete=models.SET_NULL, related_name='subscriptions')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    billing_cycle = models.CharField(max_length=8, choices=CYCLE_CHOICES, default='monthly')
    start_date = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    next_billing_date = models.DateTimeField(null=True, blank=True)
    cancel_at_period_end = models.BooleanField(default=False)
    stripe_subscription_id = models.CharField(max_length=64, blank=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"sub {self.tenant_id} {self.plan_id} [{self.status}]"


class SaasInvoice(models.Model):
    STATUS_CHOICES = (
        ('draft', 'draft'),
        ('pending', 'pending'),
        ('paid', 'paid'),
        ('overdue', 'overdue'),
        ('cancelled', 'cancelled'),
    )
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='saas_invoices')
    subscription = models.ForeignKey(Subscription, null=True, blank=True, on_delete=models.SET_NULL, related_name='invoices')
    number = models.CharField(max_length=32, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='EUR')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='pending')
    due_date = models.DateTimeField(null=True, blank=True)
    paid_date = models.DateTimeField(null=True, blank=True)
    items = models.JSONField(default=list, blank=True)
    stripe_invoice_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.number or self.stripe_invoice_id} {self.amount} {self.currency}"


class AuditLog(models.Model):
    OUTCOME_CHOICES = (
        ('SUCCESS', 'SUCCESS'),
        ('FAILURE', 'FAILURE'),
        ('DENIED', 'DENIED'),
    )
    user_id = models.CharField(max_length=64, blank=True, null=True)
    action = models.CharField(max_length=64)
    resource = models.CharField(max_length=255, blank=True)
    outcome = models.CharField(max_length=8, choices=OUTCOME_CHOICES, default='SUCCESS')
    metadata = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'timestamp']),
            models.Index(fields=['user_id', 'timestamp']),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id} {self.outcome}"


# ---------------------------------------------------------------------------
# Clinical data (tenant scoped)
# ---------------------------------------------------------------------------

class TenantScopedModel(models.Model):
    tenant_id = models.CharField(max_length=36, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Patient(TenantScopedModel):
    GENDER_CHOICES = (('M', 'M'), ('F', 'F'), ('Autre', 'Autre'), ('', ''))
    BLOOD_TYPES = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=8, choices=GENDER_CHOICES, blank=True)
    blood_type = models.CharField(max_length=3, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    chronic_diseases = models.JSONField(default=list, blank=True)
    address = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=32, default='active', db_index=True)
    last_visit = models.DateField(null=True, blank=True)
    # pk of the patient-role User whose portal account this is
    account_id = models.CharField(max_length=36, blank=True, db_index=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return self.full_name


class Appointment(TenantScopedModel):
    STATUS_CHOICES = (
        ('scheduled', 'scheduled'),
        ('confirmed', 'confirmed'),
        ('completed', 'completed'),
        ('cancelled', 'cancelled'),
        ('no_show', 'no_show'),
    )
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    start = models.DateTimeField(db_index=True)
    end = models.DateTimeField()
    reason = models.CharField(max_length=500)
    type = models.CharField(max_length=64, default='Consultation')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='scheduled')
    location = models.CharField(max_length=128, blank=True)
    provider = models.CharField(max_length=128, blank=True)
    notes = models.TextField(blank=True)

    def __str__(self) -> str:
        return f"{self.patient_id} @ {self.start:%F %H:%M}"


class MedicalRecord(TenantScopedModel):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='records')
    title = models.CharField(max_length=200)
    content = models.TextField()
    type = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=16, default='final')
    provider = models.CharField(max_length=128, blank=True)
    attachments = models.JSONField(default=list, blank=True)

    def __str__(self) -> str:
        return self.title


class Invoice(TenantScopedModel):
    STATUS_CHOICES = (('pending', 'pending'), ('paid', 'paid'), ('cancelled', 'cancelled'))

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='invoices')
    number = models.CharField(max_length=32, db_index=True)
    items = models.JSONField(default=list)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=20)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    payment_method = models.CharField(max_length=32, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='pending')
    notes = models.TextField(blank=True)

    def __str__(self) -> str:
        return self.number


class Prescription(TenantScopedModel):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='prescriptions')
    medications = models.JSONField(default=list)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=16, default='active')
    prescriber = models.CharField(max_length=128, blank=True)

    def __str__(self) -> str:
        return f"rx {self.id} patient={self.patient_id}"


class TeleconsultSession(TenantScopedModel):
    STATUS_SCHEDULED = 'scheduled'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_SCHEDULED, 'scheduled'),
        (STATUS_IN_PROGRESS, 'in_progress'),
        (STATUS_COMPLETED, 'completed'),
        (STATUS_CANCELLED, 'cancelled'),
    )
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='teleconsults')
    scheduled_date = models.DateTimeField()
    reason = models.CharField(max_length=500)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_SCHEDULED)
    room_url = models.URLField(max_length=512, blank=True)
    doctor_id = models.CharField(max_length=64, blank=True)

    def __str__(self) -> str:
        return f"teleconsult {self.id} [{self.status}]"


class Archive(TenantScopedModel):
    patient_name = models.CharField(max_length=200)
    type = models.CharField(max_length=100)
    reason = models.CharField(max_length=255, blank=True)
    size = models.CharField(max_length=32, blank=True)
    date = models.DateField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.type}: {self.patient_name}"
