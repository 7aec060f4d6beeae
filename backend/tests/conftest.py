"""Pytest configuration and fixtures."""
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Permission
from django.utils import timezone

from apps.billing.models import Invoice, LineItem
from apps.core.context import BillingContext
from apps.organizations.models import Organization
from apps.projects.models import Milestone, Project, ServiceRequest, TimeEntry


@pytest.fixture
def today():
    return date(2024, 12, 10)


@pytest.fixture
def billing_context(today):
    return BillingContext(today=today)


@pytest.fixture
def organization(db):
    return Organization.objects.create(name="Acme Dental", shortcode="ACME")


@pytest.fixture
def other_organization(db):
    return Organization.objects.create(name="Blue Harbor Law", shortcode="BHL")


@pytest.fixture
def project(organization):
    return Project.objects.create(organization=organization, name="Website Rebuild")


@pytest.fixture
def milestone(project):
    return Milestone.objects.create(
        project=project,
        name="Design",
        order=1,
        billing_date=date(2024, 12, 5),
    )


@pytest.fixture
def service_request(organization):
    return ServiceRequest.objects.create(organization=organization, subject="Contact form broken")


@pytest.fixture
def make_entry(db):
    """Factory for time entries; defaults to a billable 1h entry on 2024-12-02."""

    def _make(hours, billable=None, **kwargs):
        kwargs.setdefault("entry_date", date(2024, 12, 2))
        kwargs.setdefault("work_type", "development")
        return TimeEntry.objects.create(hours=Decimal(str(hours)), billable=billable, **kwargs)

    return _make


@pytest.fixture
def fixed_price_invoice(project, billing_context):
    """A finalized 100.00 invoice issued 2024-12-10, due 2024-12-25."""
    from apps.billing.services import InvoiceBuilder

    fixed = Milestone.objects.create(
        project=project,
        name="Launch",
        order=2,
        billing_date=date(2024, 12, 10),
        amount=Decimal("100.00"),
    )
    return InvoiceBuilder(billing_context).from_milestone(fixed.pk)


@pytest.fixture
def make_invoice(db):
    """Factory for invoices stored directly with a given status and dates; lines sum to the total."""
    counter = {"n": 0}

    def _make(organization, status, due_date, total="100.00", paid="0.00", late_fee=False, **kwargs):
        counter["n"] += 1
        finalized = status != Invoice.Status.DRAFT
        invoice = Invoice.objects.create(
            organization=organization,
            number=f"BBB-2411-{counter['n']:03d}" if finalized else "",
            invoice_type=Invoice.InvoiceType.MONTHLY,
            source_key=f"test:{counter['n']}",
            issue_date=kwargs.pop("issue_date", date(2024, 11, 1)),
            due_date=due_date,
            status=status,
            total_amount=Decimal(total),
            amount_paid=Decimal(paid),
            finalized_at=timezone.now() if finalized else None,
            **kwargs,
        )
        fee = Decimal("25.00") if late_fee else Decimal("0.00")
        LineItem.objects.create(
            invoice=invoice,
            line_type=LineItem.LineType.MILESTONE,
            description="Services",
            amount=invoice.total_amount - fee,
            display_order=1,
        )
        if late_fee:
            LineItem.objects.create(
                invoice=invoice,
                line_type=LineItem.LineType.LATE_FEE,
                description="Late Fee",
                amount=fee,
                display_order=2,
            )
        return invoice

    return _make


@pytest.fixture
def superuser(db):
    User = get_user_model()
    return User.objects.create_superuser(
        username="admin",
        email="admin@example.com",
        password="testpass123",
    )


@pytest.fixture
def viewer(db):
    """A user who can read invoices but not change them."""
    User = get_user_model()
    user = User.objects.create_user(username="viewer", password="testpass123")
    user.user_permissions.add(
        Permission.objects.get(codename="view_invoice", content_type__app_label="billing")
    )
    return User.objects.get(pk=user.pk)
