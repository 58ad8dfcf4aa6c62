"""
URL mappings for the Doctic Care API.

Paths match the ones the single-page frontend calls; trailing slashes
are omitted (``APPEND_SLASH`` is off).
"""
from django.urls import include, path

from .auth_views import RefreshView, google_callback, google_login, login_view, logout_view, me_view
from .views import analytics, clinical, health, patients, subscription

urlpatterns = [
    # Platform
    path('health', health.healthz),
    path('api/health', health.healthz),
    path('api/csrf-token', health.csrf_token),
    path('', include('django_prometheus.urls')),

    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', RefreshView.as_view(), name='token_refresh'),
    path('api/auth/logout', logout_view, name='logout_view'),
    path('api/auth/me', me_view),
    path('auth/google', google_login, name='google_login'),
    path('auth/google/callback', google_callback, name='google_callback'),

    # Practice resources
    path('api/patients', patients.patients, name='patients'),
    path('api/patients/<int:pk>', patients.patient_detail, name='patient_detail'),
    path('api/appointments', clinical.appointments, name='appointments'),
    path('api/appointments/<int:pk>', clinical.appointment_detail, name='appointment_detail'),
    path('api/records', clinical.records, name='records'),
    path('api/billing', clinical.billing, name='billing'),
    path('api/billing/<int:pk>', clinical.invoice_detail, name='invoice_detail'),
    path('api/prescriptions', clinical.prescriptions, name='prescriptions'),
    path('api/teleconsult', clinical.teleconsult, name='teleconsult'),
    path('api/teleconsult/<int:pk>/status', clinical.teleconsult_status, name='teleconsult_status'),
    path('api/archives', clinical.archives, name='archives'),
    path('api/analytics', analytics.analytics, name='analytics'),

    # Platform administration
    path('api/admin/tenants', analytics.admin_tenants, name='admin_tenants'),

    # SaaS subscription
    path('api/plans', analytics.plans, name='plans'),
    path('api/subscription', subscription.subscription, name='subscription'),
    path('api/create-checkout-session', subscription.create_checkout_session, name='checkout'),
    path('api/create-portal-session', subscription.create_portal_session, name='portal'),
    path('api/upgrade-subscription', subscription.upgrade_subscription, name='upgrade'),
    path('api/cancel-subscription', subscription.cancel_subscription, name='cancel'),
    path('api/webhooks/stripe', subscription.stripe_webhook, name='stripe_webhook'),
]
