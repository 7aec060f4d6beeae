"""Billing data classes for structured return values."""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class HoursTotals:
    """Exact hour sums over a set of time entries."""

    billable_hours: Decimal = Decimal("0")
    non_billable_hours: Decimal = Decimal("0")
    entry_count: int = 0

    @property
    def total_hours(self) -> Decimal:
        return self.billable_hours + self.non_billable_hours


@dataclass(frozen=True)
class FreeHoursProgress:
    """Free-hours consumption for a monthly report."""

    used: Decimal
    limit: Decimal
    percent: int  # capped at 100 for display
    percent_raw: Decimal
    remaining: Decimal
    overage_hours: Decimal
    overage_amount: Decimal


@dataclass
class BillingBucket:
    """Billable hours grouped by work source, work type and rate."""

    label: str
    work_type: str
    rate: Decimal
    hours: Decimal = Decimal("0")
    entry_ids: list[int] = field(default_factory=list)
    milestone_id: int | None = None
    service_request_id: int | None = None


@dataclass(frozen=True)
class LedgerSummary:
    """Payment state of a single invoice."""

    total: Decimal
    paid: Decimal
    fees: Decimal
    balance: Decimal
    payment_count: int


@dataclass(frozen=True)
class ProjectTotals:
    """Invoiced and paid sums for a project, excluding cancelled invoices."""

    invoiced: Decimal
    paid: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(self.invoiced - self.paid, Decimal("0"))


@dataclass(frozen=True)
class MilestonePayment:
    """Invoicing state of one milestone. Cancelled invoices are ignored."""

    milestone_id: int
    name: str
    amount: Decimal | None
    invoiced: Decimal
    paid: Decimal
    payment_status: str


@dataclass(frozen=True)
class ProjectProgress:
    """
    Budget, invoicing and payment progress of a project.

    The budget is the sum of the fixed milestone amounts. Percentages are
    relative to the budget, rounded to one decimal place, and are zero
    when the project has no budget.
    """

    budget: Decimal
    invoiced: Decimal
    paid: Decimal
    invoiced_percent: Decimal
    paid_percent: Decimal
    billable_hours: Decimal
    milestones: tuple[MilestonePayment, ...] = ()

    def milestone_count(self, payment_status: str) -> int:
        return sum(1 for m in self.milestones if m.payment_status == payment_status)


@dataclass(frozen=True)
class OverdueInvoiceRow:
    invoice_id: int
    number: str
    organization_id: int
    organization_name: str
    due_date: date
    balance: Decimal
    days_overdue: int
    has_late_fee: bool


@dataclass(frozen=True)
class DueSoonInvoiceRow:
    invoice_id: int
    number: str
    organization_id: int
    organization_name: str
    due_date: date
    balance: Decimal
    days_until_due: int


@dataclass(frozen=True)
class ReportNeedingInvoiceRow:
    report_id: int
    report_number: str
    organization_id: int
    organization_name: str
    report_month: date


@dataclass(frozen=True)
class ServiceRequestRow:
    service_request_id: int
    reference_number: str
    organization_id: int
    organization_name: str
    subject: str


@dataclass(frozen=True)
class TaskRow:
    task_id: int
    organization_id: int
    organization_name: str
    description: str
    due_date: date
    days_overdue: int = 0
    days_until_due: int = 0


@dataclass(frozen=True)
class AlertCounts:
    """Badge counts for the billing dashboard."""

    overdue_invoices: int = 0
    invoices_due_soon: int = 0
    reports_needing_invoices: int = 0
    new_service_requests: int = 0
    in_progress_service_requests: int = 0
    overdue_tasks: int = 0
    tasks_due_soon: int = 0

    @property
    def total(self) -> int:
        """Additive sum of the actionable alert lists."""
        return (
            self.overdue_invoices
            + self.invoices_due_soon
            + self.reports_needing_invoices
            + self.new_service_requests
            + self.overdue_tasks
            + self.tasks_due_soon
        )
