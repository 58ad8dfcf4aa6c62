"""
Practice-side helpers shared by the clinical views: pagination, invoice
numbering and totals, teleconsult rooms, and the analytics aggregates
for a single practice and for the whole network.
"""
from __future__ import annotations

import logging
import re
import secrets
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Tuple

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.contrib.auth import get_user_model
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone

from practice.models import (
    Appointment,
    Invoice,
    Patient,
    Prescription,
    SaasInvoice,
    Tenant,
    TeleconsultSession,
)
from practice.services.tenancy import tenant_db_alias

logger = logging.getLogger(__name__)

User = get_user_model()

CENT = Decimal('0.01')
MAX_PAGE_SIZE = 100


def paginate(qs, page: int = 1, page_size: int = 20) -> Tuple[list, Dict[str, int]]:
    page = max(page or 1, 1)
    page_size = min(max(page_size or 20, 1), MAX_PAGE_SIZE)
    total = qs.count()
    start = (page - 1) * page_size
    items = list(qs[start:start + page_size])
    return items, {'total': total, 'page': page, 'pageSize': page_size,
                   'pages': (total + page_size - 1) // page_size}


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
def compute_totals(items: Iterable[dict], tax_rate) -> Tuple[List[dict], Decimal, Decimal, Decimal]:
    """Line totals, subtotal, tax and total; client-sent totals are ignored."""
    lines = []
    subtotal = Decimal('0')
    for item in items:
        qty = Decimal(str(item.get('qty', 1)))
        price = Decimal(str(item['price']))
        line_total = (qty * price).quantize(CENT, ROUND_HALF_UP)
        lines.append({
            'description': item['description'],
            'qty': int(qty) if qty == qty.to_integral_value() else float(qty),
            'price': float(price),
            'total': float(line_total),
        })
        subtotal += line_total
    tax = (subtotal * Decimal(str(tax_rate)) / 100).quantize(CENT, ROUND_HALF_UP)
    return lines, subtotal, tax, subtotal + tax


_NUMBER_RE = re.compile(r'^INV-(\d{4})-(\d+)$')


def next_invoice_number(qs, year: int = None) -> str:
    """``INV-{year}-{NNN}``, one past the highest number used this year."""
    year = year or timezone.now().year
    highest = 0
    for number in qs.filter(number__startswith=f'INV-{year}-').values_list('number', flat=True):
        m = _NUMBER_RE.match(number)
        if m:
            highest = max(highest, int(m.group(2)))
    return f'INV-{year}-{highest + 1:03d}'


# ---------------------------------------------------------------------
# Teleconsultation
# ---------------------------------------------------------------------
def room_url(patient: Patient = None) -> str:
    slug = ''
    if patient is not None:
        slug = re.sub(r'[^A-Za-z0-9]+', '-', patient.full_name).strip('-') + '-'
    return f'https://meet.jit.si/Doctic-{slug}{secrets.token_hex(6)}'


def teleconsult_group(session_id) -> str:
    return f'teleconsult_{session_id}'


def teleconsult_scope(user) -> Dict[str, str]:
    """Filters limiting the sessions ``user`` may see.

    Patients only reach sessions of the patient record linked to their
    account; an unlinked patient account reaches none.
    """
    if getattr(user, 'role', None) == 'patient':
        return {'patient__account_id': str(user.pk)}
    return {}


def broadcast_teleconsult_status(session: TeleconsultSession) -> None:
    layer = get_channel_layer()
    if layer is None:
        return
    event = {
        'type': 'teleconsult.status',
        'sessionId': session.id,
        'status': session.status,
        'ts': timezone.now().isoformat(),
    }
    try:
        async_to_sync(layer.group_send)(teleconsult_group(session.id), event)
    except Exception:
        logger.exception('teleconsult status broadcast failed for session %s', session.id)


# ---------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------
def _months_back(n: int):
    today = timezone.now()
    return (today.replace(day=1, hour=0, minute=0, second=0, microsecond=0) - timedelta(days=31 * (n - 1))).replace(day=1)


def practice_analytics(tenant: Tenant) -> dict:
    """Dashboard figures of one practice."""
    using = tenant_db_alias(tenant)
    tid = str(tenant.id)
    now = timezone.now()

    patients = Patient.objects.using(using).filter(tenant_id=tid)
    appointments = Appointment.objects.using(using).filter(tenant_id=tid)
    invoices = Invoice.objects.using(using).filter(tenant_id=tid)

    revenue = invoices.filter(status='paid').aggregate(total=Sum('total'))['total'] or Decimal('0')
    pending = invoices.filter(status='pending').aggregate(total=Sum('total'))['total'] or Decimal('0')
    by_month = (
        invoices.filter(status='paid', created_at__gte=_months_back(6))
        .annotate(month=TruncMonth('created_at'))
        .values('month')
        .annotate(revenue=Sum('total'))
        .order_by('month')
    )
    return {
        'patients': {
            'total': patients.count(),
            'active': patients.filter(status='active').count(),
            'newThisMonth': patients.filter(created_at__gte=now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)).count(),
        },
        'appointments': {
            'upcoming': appointments.filter(start__gte=now).exclude(status='cancelled').count(),
            'today': appointments.filter(start__date=now.date()).count(),
            'byStatus': dict(appointments.values_list('status').annotate(n=Count('id')).order_by()),
        },
        'billing': {
            'revenue': float(revenue),
            'pending': float(pending),
            'revenueByMonth': [
                {'month': row['month'].strftime('%Y-%m'), 'revenue': float(row['revenue'])}
                for row in by_month if row['month']
            ],
        },
        'prescriptions': {
            'active': Prescription.objects.using(using).filter(tenant_id=tid, status='active').count(),
        },
        'teleconsult': {
            'scheduled': TeleconsultSession.objects.using(using).filter(
                tenant_id=tid, status=TeleconsultSession.STATUS_SCHEDULED).count(),
        },
    }


def tenant_usage(tenant: Tenant) -> dict:
    using = tenant_db_alias(tenant)
    return {
        'tenantId': str(tenant.id),
        'period': timezone.now().strftime('%Y-%m'),
        'patientsCount': Patient.objects.using(using).filter(tenant_id=str(tenant.id)).count(),
        'usersCount': tenant.users.count(),
    }


def network_analytics() -> Tuple[List[dict], dict]:
    """Every tenant with its usage, and the network-wide totals."""
    revenue_by_tenant = dict(
        SaasInvoice.objects.filter(status='paid').values_list('tenant_id').annotate(total=Sum('amount')).order_by()
    )
    tenants = []
    for tenant in Tenant.objects.select_related('plan').order_by('name'):
        try:
            usage = tenant_usage(tenant)
        except Exception:
            # an unreachable tenant database must not hide the others
            logger.exception('usage unavailable for tenant %s', tenant.id)
            usage = {'tenantId': str(tenant.id), 'period': timezone.now().strftime('%Y-%m'),
                     'patientsCount': None, 'usersCount': tenant.users.count()}
        tenants.append({
            'id': str(tenant.id),
            'name': tenant.name,
            'slug': tenant.slug,
            'country': tenant.country,
            'planId': tenant.plan_id,
            'subscriptionStatus': tenant.subscription_status,
            'adminEmail': tenant.admin_email,
            'createdAt': tenant.created_at.date().isoformat(),
            'usage': usage,
            'revenue': float(revenue_by_tenant.get(tenant.id) or 0),
            'activeUsers': tenant.users.filter(is_active=True).count(),
        })

    total_revenue = sum(t['revenue'] for t in tenants)
    last_month = timezone.now() - timedelta(days=30)
    new_tenants = Tenant.objects.filter(created_at__gte=last_month).count()
    older = max(len(tenants) - new_tenants, 0)
    by_plan = Tenant.objects.values('plan_id').annotate(count=Count('id')).order_by('plan_id')
    analytics = {
        'totalRevenue': total_revenue,
        'totalPatients': sum(t['usage']['patientsCount'] or 0 for t in tenants),
        'totalUsers': User.objects.filter(~Q(role='super_admin')).count(),
        'totalCabinets': len(tenants),
        'avgRevenuePerCabinet': round(total_revenue / len(tenants), 2) if tenants else 0,
        'growthRate': round(100.0 * new_tenants / older, 1) if older else 0.0,
        'cabinetsByPlan': [{'plan': row['plan_id'] or 'free', 'count': row['count']} for row in by_plan],
        'topCabinets': [
            {'name': t['name'], 'revenue': t['revenue'], 'patients': t['usage']['patientsCount']}
            for t in sorted(tenants, key=lambda t: t['revenue'], reverse=True)[:5]
        ],
    }
    return tenants, analytics
