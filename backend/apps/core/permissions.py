"""Permission utilities for GraphQL."""
from strawberry.types import Info

from apps.core.context import Context


class PermissionError(Exception):
    """Raised when user lacks required permissions."""

    pass


def get_current_user(info: Info[Context, None]):
    """Get the current authenticated user or raise error."""
    if not info.context.is_authenticated:
        raise PermissionError("Authentication required")
    return info.context.user


def require_perm(info: Info[Context, None], perm: str):
    """Get the current user and verify they hold a Django model permission.

    ``perm`` uses Django's ``"<app_label>.<codename>"`` form, e.g.
    ``"billing.view_invoice"``. Raises PermissionError if not authenticated
    or permission denied. Returns the user on success. Use in queries.
    """
    user = get_current_user(info)
    if not user.has_perm(perm):
        raise PermissionError(f"Permission denied: {perm}")
    return user


def check_perm(info: Info[Context, None], perm: str):
    """Get the current user and check permission without raising.

    Returns (user, None) on success or (None, error_string) on failure.
    Use in mutations that return result types.
    """
    if not info.context.is_authenticated:
        return None, "Authentication required"
    user = info.context.user
    if not user.has_perm(perm):
        return None, "Permission denied"
    return user, None
