"""Billing sources: the records an invoice can be generated from."""
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.db.models import Q, QuerySet

from apps.billing.conf import billing_decimal
from apps.billing.exceptions import NotFound
from apps.billing.models import Invoice, MonthlyReport
from apps.projects.models import Milestone, Project, TimeEntry


class BillingSource(ABC):
    """Common interface over milestones, monthly reports and project closeouts."""

    kind: str
    invoice_type: str

    def __init__(self, record):
        self.record = record

    @property
    def pk(self) -> int:
        return self.record.pk

    @property
    def source_key(self) -> str:
        return f"{self.kind}:{self.record.pk}"

    @abstractmethod
    def time_entries(self) -> QuerySet:
        """All time entries belonging to this source."""

    @abstractmethod
    def organization(self):
        """The organization that is billed."""

    @abstractmethod
    def free_hours(self) -> Decimal:
        """Hours granted free of charge before billing starts."""

    @abstractmethod
    def logical_date(self, today: date) -> date:
        """Date the invoice number is derived from."""

    @abstractmethod
    def invoice_links(self) -> dict:
        """Foreign keys stored on the invoice."""

    @abstractmethod
    def describe(self) -> str:
        """Human readable name used in line descriptions."""

    def fixed_amount(self) -> Decimal | None:
        return None

    def line_links(self) -> dict:
        """Foreign keys stored on line items besides the work source."""
        return {}

    def open_invoice(self) -> Invoice | None:
        return (
            Invoice.objects
            .filter(source_key=self.source_key)
            .exclude(status=Invoice.Status.CANCELLED)
            .first()
        )


class MilestoneSource(BillingSource):
    kind = "milestone"
    invoice_type = Invoice.InvoiceType.MILESTONE

    def time_entries(self) -> QuerySet:
        return TimeEntry.objects.filter(milestone=self.record)

    def organization(self):
        return self.record.project.organization

    def free_hours(self) -> Decimal:
        return self.record.free_hours or Decimal("0")

    def logical_date(self, today: date) -> date:
        return self.record.billing_date or today

    def invoice_links(self) -> dict:
        return {"milestone": self.record}

    def describe(self) -> str:
        return f"{self.record.project.name}: {self.record.name}"

    def fixed_amount(self) -> Decimal | None:
        return self.record.amount


class MonthlyReportSource(BillingSource):
    kind = "monthly_report"
    invoice_type = Invoice.InvoiceType.MONTHLY

    def time_entries(self) -> QuerySet:
        month_start = self.record.report_month.replace(day=1)
        return TimeEntry.objects.filter(
            service_request__organization_id=self.record.organization_id,
            entry_date__gte=month_start,
            entry_date__lt=month_start + relativedelta(months=1),
        )

    def organization(self):
        return self.record.organization

    def free_hours(self) -> Decimal:
        """Report limit, then the organization allowance, then the configured default."""
        if self.record.free_hours_limit is not None:
            return self.record.free_hours_limit
        if self.record.organization.free_hours is not None:
            return self.record.organization.free_hours
        return billing_decimal("DEFAULT_FREE_HOURS")

    def logical_date(self, today: date) -> date:
        return self.record.report_month

    def invoice_links(self) -> dict:
        return {"monthly_report": self.record}

    def line_links(self) -> dict:
        return {"monthly_report": self.record}

    def describe(self) -> str:
        return f"Support hours {self.record.report_month:%B %Y}"


class ProjectSource(BillingSource):
    kind = "project"
    invoice_type = Invoice.InvoiceType.CLOSEOUT

    def time_entries(self) -> QuerySet:
        return TimeEntry.objects.filter(
            Q(milestone__project=self.record) | Q(service_request__project=self.record)
        )

    def organization(self):
        return self.record.organization

    def free_hours(self) -> Decimal:
        return self.record.free_hours or Decimal("0")

    def logical_date(self, today: date) -> date:
        return self.record.closed_on or today

    def invoice_links(self) -> dict:
        return {"project": self.record}

    def describe(self) -> str:
        return f"{self.record.name} closeout"


SOURCE_TYPES = {
    "milestone": (MilestoneSource, Milestone.objects.select_related("project__organization")),
    "monthly_report": (MonthlyReportSource, MonthlyReport.objects.select_related("organization")),
    "project": (ProjectSource, Project.objects.select_related("organization")),
}


def source_for(kind: str, pk: int) -> BillingSource:
    """Load the record behind a billing source."""
    try:
        source_class, queryset = SOURCE_TYPES[kind]
    except KeyError:
        raise NotFound(f"Unknown billing source {kind!r}", kind=kind) from None
    try:
        record = queryset.get(pk=pk)
    except queryset.model.DoesNotExist:
        raise NotFound(f"{kind} {pk} not found", kind=kind, pk=pk) from None
    return source_class(record)
