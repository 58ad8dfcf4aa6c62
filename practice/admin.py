"""
Django admin registrations for the management models.

Clinical rows may live in tenant databases the admin site does not
know about, so only the management database is exposed here.
"""
from django.contrib import admin

from .models import AuditLog, Plan, SaasInvoice, Subscription, Tenant, User


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'price_monthly', 'price_yearly', 'currency', 'popular')


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'country', 'plan', 'subscription_status', 'created_at')
    list_filter = ('subscription_status', 'plan', 'country')
    search_fields = ('name', 'slug', 'admin_email', 'stripe_customer_id')
    exclude = ('db_password',)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'role', 'tenant', 'is_active', 'is_staff')
    list_filter = ('role', 'tenant', 'is_active')
    search_fields = ('username', 'email', 'google_id')
    exclude = ('password',)


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ('tenant', 'plan', 'status', 'billing_cycle', 'current_period_end', 'cancel_at_period_end')
    list_filter = ('status', 'billing_cycle')
    search_fields = ('stripe_subscription_id',)


@admin.register(SaasInvoice)
class SaasInvoiceAdmin(admin.ModelAdmin):
    list_display = ('number', 'tenant', 'amount', 'currency', 'status', 'paid_date')
    list_filter = ('status',)
    search_fields = ('number', 'stripe_invoice_id')


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'user_id', 'action', 'resource', 'outcome')
    list_filter = ('outcome', 'action')
    search_fields = ('user_id', 'resource')
    readonly_fields = ('timestamp', 'user_id', 'action', 'resource', 'outcome', 'metadata')
