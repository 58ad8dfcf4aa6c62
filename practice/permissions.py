"""
Role based access control.

``PERMISSIONS`` is the single table of which roles may perform which
action; views ask for actions through :func:`HasPermission`, per HTTP
method when one route serves several.  Super admins pass every check.
"""
from rest_framework.permissions import BasePermission

from practice.services.tenancy import current_tenant

SUPER_ADMIN = "super_admin"

PERMISSIONS = {
    "patients:view": {"doctor", "admin", "assistant"},
    "patients:create": {"doctor", "admin"},
    "patients:edit": {"doctor", "admin"},
    "patients:delete": {"admin"},
    "records:view": {"doctor", "admin"},
    "records:write": {"doctor"},
    "appointments:view": {"doctor", "admin", "assistant"},
    "appointments:create": {"doctor", "admin", "assistant"},
    "appointments:edit": {"doctor", "admin", "assistant"},
    "billing:view": {"doctor", "admin", "assistant"},
    "billing:create": {"doctor", "admin"},
    "billing:edit": {"admin"},
    "analytics:view": {"admin"},
    "prescriptions:view": {"doctor", "admin"},
    "prescriptions:create": {"doctor"},
    "teleconsult:view": {"doctor", "patient"},
    "teleconsult:start": {"doctor"},
    "subscription:manage": {"admin"},
}


def role_allows(role: str, action: str) -> bool:
    if role == SUPER_ADMIN:
        return True
    return role in PERMISSIONS.get(action, ())


def HasPermission(default: str = None, **by_method: str):
    """Build a DRF permission class.

    ``HasPermission("billing:edit")`` guards every method;
    ``HasPermission(GET="patients:view", POST="patients:create")``
    picks the action from the request method.  Methods without an
    action are refused.
    """
    actions = {method.upper(): action for method, action in by_method.items()}
    if "GET" in actions:
        actions.setdefault("HEAD", actions["GET"])
    for action in [default, *actions.values()]:
        if action is not None and action not in PERMISSIONS:
            raise KeyError(f"unknown permission {action!r}")

    class _HasPermission(BasePermission):
        message = "Access denied for this role"

        def has_permission(self, request, view) -> bool:
            user = getattr(request, "user", None)
            if not (user and user.is_authenticated):
                return False
            action = actions.get(request.method, default)
            return action is not None and role_allows(getattr(user, "role", ""), action)

    return _HasPermission


class IsSuperAdmin(BasePermission):
    """Only platform super admins."""
    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == SUPER_ADMIN)


class HasTenant(BasePermission):
    """The request acts for a tenant; accounts without one hold no clinical data."""
    message = "No tenant bound to this request"

    def has_permission(self, request, view) -> bool:
        return current_tenant(request) is not None
