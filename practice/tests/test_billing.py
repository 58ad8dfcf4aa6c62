from types import SimpleNamespace

import pytest
import stripe

from practice.models import Plan, Subscription, Tenant
from practice.services import billing

pytestmark = pytest.mark.django_db


@pytest.fixture
def mock_stripe(settings):
    settings.STRIPE_SECRET_KEY = ''


@pytest.fixture
def live_stripe(settings):
    settings.STRIPE_SECRET_KEY = 'sk_test_51Hd0ct1cL1v3K3y'
    settings.STRIPE_PRICE_PRO_MONTHLY = 'price_pro_m'
    settings.STRIPE_PRICE_PRO_ANNUAL = 'price_pro_y'


@pytest.mark.parametrize('key,expected', [
    ('', False),
    ('pk_live_abc', False),
    ('sk_test_xxx', False),
    ('sk_YOUR_SECRET_KEY', False),
    ('sk_test_51Hd0ct1cL1v3K3y', True),
])
def test_stripe_configured(settings, key, expected):
    settings.STRIPE_SECRET_KEY = key
    assert billing.stripe_configured() is expected


def test_price_for(live_stripe):
    assert billing.price_for('pro', 'monthly') == 'price_pro_m'
    assert billing.price_for('professional', 'annual') == 'price_pro_y'
    assert billing.price_for('starter', 'monthly') is None


def test_subscription_defaults_to_free_plan(admin_user, client_for):
    r = client_for(admin_user).get('/api/subscription')
    assert r.status_code == 200
    assert r.data['subscription']['plan'] == 'free'
    assert r.data['subscription']['status'] == 'active'


def test_mock_checkout_activates_subscription(mock_stripe, admin_user, client_for, tenant, settings):
    tenant.subscription_status = Tenant.STATUS_LIMITED
    tenant.save()
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'pro', 'billingPeriod': 'monthly', 'email': 'admin@parc.example'},
                                    format='json')
    assert r.status_code == 200
    assert r.data['url'].startswith(f'{settings.FRONTEND_URL}/pricing?success=true&session_id=mock_session_')
    sub = Subscription.objects.get(tenant=tenant)
    assert sub.status == Subscription.STATUS_ACTIVE
    assert sub.plan_id == 'pro'
    tenant.refresh_from_db()
    assert tenant.subscription_status == Tenant.STATUS_ACTIVE

    r = client_for(admin_user).get('/api/subscription')
    assert r.data['subscription']['plan'] == 'pro'
    assert r.data['subscription']['billingCycle'] == 'monthly'


def test_checkout_requires_email(mock_stripe, admin_user, client_for):
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'pro', 'billingPeriod': 'monthly'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['message'] == 'Email required'


def test_checkout_rejects_unknown_period(mock_stripe, admin_user, client_for):
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'pro', 'billingPeriod': 'weekly', 'email': 'a@b.example'},
                                    format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'validation_error'


def test_checkout_is_audited(mock_stripe, admin_user, client_for):
    from practice.models import AuditLog

    client_for(admin_user).post('/api/create-checkout-session',
                                {'plan': 'pro', 'billingPeriod': 'annual', 'email': 'a@b.example'}, format='json')
    row = AuditLog.objects.get(action='SUBSCRIPTION_CHECKOUT')
    assert row.user_id == str(admin_user.pk)
    assert row.outcome == 'SUCCESS'


def test_live_checkout_calls_stripe(live_stripe, admin_user, client_for, tenant, monkeypatch):
    calls = {}

    def fake_create(**kwargs):
        calls.update(kwargs)
        return SimpleNamespace(url='https://checkout.stripe.com/c/pay/cs_test_1')

    monkeypatch.setattr(stripe.checkout.Session, 'create', fake_create)
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'pro', 'billingPeriod': 'annual', 'email': 'a@b.example'},
                                    format='json')
    assert r.status_code == 200
    assert r.data['url'] == 'https://checkout.stripe.com/c/pay/cs_test_1'
    assert calls['line_items'] == [{'price': 'price_pro_y', 'quantity': 1}]
    assert calls['metadata']['tenantId'] == str(tenant.id)
    assert calls['subscription_data'] == {'trial_period_days': 14}
    # nothing is activated until the webhook confirms payment
    assert not Subscription.objects.exists()


def test_live_checkout_stripe_failure_is_502(live_stripe, admin_user, client_for, monkeypatch):
    def boom(**kwargs):
        raise stripe.InvalidRequestError('No such price', 'price')

    monkeypatch.setattr(stripe.checkout.Session, 'create', boom)
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'pro', 'billingPeriod': 'monthly', 'email': 'a@b.example'},
                                    format='json')
    assert r.status_code == 502
    assert r.data['error']['code'] == 'stripe_error'


def test_live_checkout_unknown_plan_is_400(live_stripe, admin_user, client_for):
    r = client_for(admin_user).post('/api/create-checkout-session',
                                    {'plan': 'starter', 'billingPeriod': 'monthly', 'email': 'a@b.example'},
                                    format='json')
    assert r.status_code == 400


def test_mock_portal_session(mock_stripe, admin_user, client_for, settings):
    r = client_for(admin_user).post('/api/create-portal-session', {}, format='json')
    assert r.status_code == 200
    assert r.data['url'] == f'{settings.FRONTEND_URL}/subscription?portal_acting=true'


def test_cancel_marks_period_end(mock_stripe, admin_user, client_for, tenant):
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_1')
    r = client_for(admin_user).post('/api/cancel-subscription', {}, format='json')
    assert r.status_code == 200
    assert r.data['success'] is True
    assert r.data['subscription']['cancelAtPeriodEnd'] is True
    assert Subscription.objects.get(tenant=tenant).cancel_at_period_end is True


def test_mock_upgrade_switches_plan(mock_stripe, admin_user, client_for, tenant):
    Plan.objects.create(id='network', name='Network', price_monthly=199)
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_1')
    r = client_for(admin_user).post('/api/upgrade-subscription', {'newPriceId': 'network'}, format='json')
    assert r.status_code == 200
    assert r.data['subscription']['id'] == 'sub_1'
    assert Subscription.objects.get(tenant=tenant).plan_id == 'network'


def test_live_upgrade_prorates(live_stripe, admin_user, client_for, tenant, monkeypatch):
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_1')
    modified = {}
    monkeypatch.setattr(stripe.Subscription, 'retrieve',
                        lambda sid: {'id': sid, 'items': {'data': [{'id': 'si_1'}]}})

    def fake_modify(sid, **kwargs):
        modified.update(kwargs, sid=sid)
        return {'id': sid, 'status': 'active'}

    monkeypatch.setattr(stripe.Subscription, 'modify', fake_modify)
    r = client_for(admin_user).post('/api/upgrade-subscription', {'newPriceId': 'price_pro_y'}, format='json')
    assert r.status_code == 200
    assert modified == {'sid': 'sub_1', 'items': [{'id': 'si_1', 'price': 'price_pro_y'}],
                        'proration_behavior': 'create_prorations'}


@pytest.fixture
def foreign_subscription(other_tenant):
    other_tenant.stripe_customer_id = 'cus_OTHER'
    other_tenant.save()
    return Subscription.objects.create(tenant=other_tenant, plan=other_tenant.plan, stripe_subscription_id='sub_OTHER')


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(stripe.Subscription, 'modify', lambda sid, **kw: calls.append((sid, kw)) or {'id': sid})
    monkeypatch.setattr(stripe.Subscription, 'retrieve',
                        lambda sid: calls.append((sid, 'retrieve')) or {'id': sid, 'items': {'data': [{'id': 'si_1'}]}})
    monkeypatch.setattr(stripe.billing_portal.Session, 'create',
                        lambda **kw: calls.append((kw['customer'], 'portal')) or SimpleNamespace(url='https://billing'))
    return calls


@pytest.mark.parametrize('url,body', [
    ('/api/cancel-subscription', {'subscriptionId': 'sub_OTHER'}),
    ('/api/upgrade-subscription', {'subscriptionId': 'sub_OTHER', 'newPriceId': 'price_pro_y'}),
    ('/api/create-portal-session', {'customerId': 'cus_OTHER'}),
])
def test_stripe_ids_of_another_tenant_are_refused(live_stripe, admin_user, client_for, tenant,
                                                  foreign_subscription, stripe_calls, url, body):
    tenant.stripe_customer_id = 'cus_OWN'
    tenant.save()
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_OWN')

    r = client_for(admin_user).post(url, body, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'forbidden'
    assert stripe_calls == []
    foreign_subscription.refresh_from_db()
    assert foreign_subscription.cancel_at_period_end is False


def test_stripe_ids_come_from_the_callers_tenant(live_stripe, admin_user, client_for, tenant,
                                                 foreign_subscription, stripe_calls):
    tenant.stripe_customer_id = 'cus_OWN'
    tenant.save()
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_OWN')
    c = client_for(admin_user)

    assert c.post('/api/cancel-subscription', {'subscriptionId': 'sub_OWN'}, format='json').status_code == 200
    assert c.post('/api/create-portal-session', {}, format='json').data['url'] == 'https://billing'
    assert stripe_calls == [('sub_OWN', {'cancel_at_period_end': True}), ('cus_OWN', 'portal')]


def test_mock_mode_refuses_foreign_ids_too(mock_stripe, admin_user, client_for, tenant, foreign_subscription):
    Subscription.objects.create(tenant=tenant, plan=tenant.plan, stripe_subscription_id='sub_1')
    r = client_for(admin_user).post('/api/upgrade-subscription',
                                    {'subscriptionId': 'sub_OTHER', 'newPriceId': 'network'}, format='json')
    assert r.status_code == 403
    from practice.models import AuditLog
    assert AuditLog.objects.get(action='SUBSCRIPTION_UPGRADE').outcome == 'DENIED'


def test_doctor_cannot_manage_subscription(mock_stripe, doctor, client_for):
    c = client_for(doctor)
    assert c.post('/api/upgrade-subscription', {'newPriceId': 'network'}, format='json').status_code == 403
    assert c.post('/api/cancel-subscription', {}, format='json').status_code == 403


def test_anonymous_cannot_checkout():
    from rest_framework.test import APIClient

    r = APIClient().post('/api/create-checkout-session', {'plan': 'pro', 'billingPeriod': 'monthly'}, format='json')
    assert r.status_code == 401
