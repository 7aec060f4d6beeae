"""Request and call context objects."""
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from django.http import HttpRequest
from django.utils import timezone

from apps.core.auth import get_user_from_token


@dataclass(frozen=True)
class BillingContext:
    """
    Explicit context handed to every billing service.

    Replaces any notion of a process-wide "current organization": the
    organization scope, the acting user and the business date travel with
    each call.
    """

    actor: Any = None
    organization_id: int | None = None
    today: date = field(default_factory=timezone.localdate)

    def for_organization(self, organization_id: int | None) -> "BillingContext":
        return replace(self, organization_id=organization_id)


@dataclass
class Context:
    """GraphQL request context."""

    request: HttpRequest
    user: Any = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def billing(self, organization_id: int | None = None) -> BillingContext:
        """Build the billing context for this request."""
        return BillingContext(actor=self.user, organization_id=organization_id)


def get_context(request: HttpRequest) -> Context:
    """Extract context from request, including authenticated user."""
    user = None

    # Try to get token from Authorization header
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]
        user = get_user_from_token(token)

    return Context(request=request, user=user)

