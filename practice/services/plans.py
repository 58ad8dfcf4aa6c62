from decimal import Decimal
from typing import Any, Dict, Tuple

from practice.models import Plan

DEFAULT_PLANS = (
    {
        'id': 'starter',
        'name': 'Starter',
        'description': 'Pour les cabinets individuels débutants',
        'price_monthly': Decimal('29'),
        'price_yearly': Decimal('290'),
        'limits': {'patients': 500, 'users': 2, 'storageGB': 5, 'aiRequests': 0},
        'features': {'billing': False, 'products': False, 'aiCopilot': False, 'offline': True,
                     'analytics': False, 'multiCabinet': False, 'prioritySupport': False},
        'popular': False,
    },
    {
        'id': 'pro',
        'name': 'Pro',
        'description': 'Pour les cabinets en croissance',
        'price_monthly': Decimal('79'),
        'price_yearly': Decimal('790'),
        'limits': {'patients': -1, 'users': 5, 'storageGB': 50, 'aiRequests': 500},
        'features': {'billing': True, 'products': True, 'aiCopilot': True, 'offline': True,
                     'analytics': True, 'multiCabinet': False, 'prioritySupport': False},
        'popular': True,
    },
    {
        'id': 'network',
        'name': 'Network',
        'description': 'Pour les réseaux multi-cabinets',
        'price_monthly': Decimal('199'),
        'price_yearly': Decimal('1990'),
        'limits': {'patients': -1, 'users': -1, 'storageGB': 500, 'aiRequests': -1},
        'features': {'billing': True, 'products': True, 'aiCopilot': True, 'offline': True,
                     'analytics': True, 'multiCabinet': True, 'prioritySupport': True},
        'popular': False,
    },
)


def seed_plans() -> Tuple[int, int]:
    """Create or refresh the catalogue plans; returns (created, updated)."""
    created = updated = 0
    for data in DEFAULT_PLANS:
        values = dict(data)
        plan_id = values.pop('id')
        _, was_created = Plan.objects.update_or_create(id=plan_id, defaults=values)
        if was_created:
            created += 1
        else:
            updated += 1
    return created, updated


def plan_payload(plan: Plan) -> Dict[str, Any]:
    return {
        'id': plan.id,
        'name': plan.name,
        'description': plan.description,
        'priceMonthly': float(plan.price_monthly),
        'priceYearly': float(plan.price_yearly),
        'currency': plan.currency,
        'limits': plan.limits,
        'features': plan.features,
        'popular': plan.popular,
    }


def within_limit(plan: Plan, key: str, current: int) -> bool:
    """Whether one more ``key`` (patients, users...) fits in ``plan``."""
    if plan is None:
        return True
    limit = (plan.limits or {}).get(key, -1)
    return limit < 0 or current < limit
