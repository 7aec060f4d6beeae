"""GraphQL schema for billing."""
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List

import strawberry
import strawberry_django
from strawberry import auto
from strawberry.types import Info

from apps.billing.alerts import BillingAlertsAggregator
from apps.billing.conf import format_currency
from apps.billing.dashboard import cached_alert_counts
from apps.billing.exceptions import BillingError, NotFound
from apps.billing.hours import HoursAggregator
from apps.billing.late_fees import LateFeeApplier
from apps.billing.ledger import PaymentLedger
from apps.billing.models import Invoice, LineItem, Payment
from apps.billing.services import InvoiceBuilder
from apps.billing.sources import source_for
from apps.core.context import Context
from apps.core.permissions import check_perm, require_perm
from apps.projects.models import Milestone


# =========================================================================
# Types
# =========================================================================


@strawberry.type
class LineItemType:
    """A billed line on an invoice."""

    id: int
    line_type: str
    description: str
    quantity: Decimal | None
    rate: Decimal | None
    amount: Decimal
    amount_display: str


@strawberry.type
class InvoiceType:
    """An invoice with display-ready totals."""

    id: int
    number: str
    organization_id: int
    organization_name: str
    invoice_type: str
    status: str
    status_label: str
    issue_date: date
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    total_display: str
    balance_display: str
    has_late_fee: bool
    pdf_url: str | None
    line_items: List[LineItemType]


@strawberry_django.type(Payment)
class PaymentType:
    """A recorded payment. Fees are listed but never credited."""

    id: auto
    amount: auto
    method: auto
    transaction_reference: auto
    fee: auto
    recorded_at: auto

    @strawberry.field
    def invoice_id(self) -> int:
        return self.invoice_id


@strawberry.type
class LedgerSummaryType:
    total: Decimal
    paid: Decimal
    fees: Decimal
    balance: Decimal
    payment_count: int


@strawberry.type
class ProjectTotalsType:
    invoiced: Decimal
    paid: Decimal
    outstanding: Decimal
    invoiced_display: str
    paid_display: str


@strawberry.type
class MilestonePaymentType:
    milestone_id: int
    name: str
    amount: Decimal | None
    invoiced: Decimal
    paid: Decimal
    payment_status: str


@strawberry.type
class ProjectProgressType:
    budget: Decimal
    invoiced: Decimal
    paid: Decimal
    invoiced_percent: Decimal
    paid_percent: Decimal
    billable_hours: Decimal
    budget_display: str
    pending_milestones: int
    invoiced_milestones: int
    paid_milestones: int
    milestones: List[MilestonePaymentType]


@strawberry.type
class FreeHoursProgressType:
    used: Decimal
    limit: Decimal
    percent: int
    percent_raw: Decimal
    remaining: Decimal
    overage_hours: Decimal
    overage_amount: Decimal


@strawberry.type
class AlertCountsType:
    """Badge counts for the billing dashboard."""

    overdue_invoices: int
    invoices_due_soon: int
    reports_needing_invoices: int
    new_service_requests: int
    in_progress_service_requests: int
    overdue_tasks: int
    tasks_due_soon: int
    total: int


@strawberry.type
class OverdueInvoiceAlertType:
    invoice_id: int
    number: str
    organization_name: str
    due_date: date
    balance: Decimal
    days_overdue: int
    has_late_fee: bool


@strawberry.type
class DueSoonInvoiceAlertType:
    invoice_id: int
    number: str
    organization_name: str
    due_date: date
    balance: Decimal
    days_until_due: int


@strawberry.type
class ReportAlertType:
    report_id: int
    report_number: str
    organization_name: str
    report_month: date


@strawberry.type
class ServiceRequestAlertType:
    service_request_id: int
    reference_number: str
    organization_name: str
    subject: str


@strawberry.type
class TaskAlertType:
    task_id: int
    organization_name: str
    description: str
    due_date: date
    days_overdue: int
    days_until_due: int


@strawberry.type
class BillingAlertsType:
    overdue_invoices: List[OverdueInvoiceAlertType]
    invoices_due_soon: List[DueSoonInvoiceAlertType]
    reports_needing_invoices: List[ReportAlertType]
    new_service_requests: List[ServiceRequestAlertType]
    overdue_tasks: List[TaskAlertType]
    tasks_due_soon: List[TaskAlertType]
    in_progress_service_requests: int
    total: int


@strawberry.enum
class InvoiceSourceKind(Enum):
    MILESTONE = "milestone"
    MONTHLY_REPORT = "monthly_report"
    PROJECT = "project"


@strawberry.enum
class PaymentMethod(Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER_TRANSFER = "other_transfer"


@strawberry.input
class RecordPaymentInput:
    invoice_id: int
    amount: Decimal
    method: PaymentMethod
    transaction_reference: str = ""
    fee: Decimal = Decimal("0")


@strawberry.type
class InvoiceResult:
    success: bool
    error: str | None = None
    message: str | None = None
    invoice_id: int | None = None
    invoice: InvoiceType | None = None


@strawberry.type
class PaymentResult:
    success: bool
    error: str | None = None
    message: str | None = None
    payment: PaymentType | None = None
    invoice: InvoiceType | None = None


@strawberry.type
class LateFeeResult:
    success: bool
    error: str | None = None
    message: str | None = None
    line_item: LineItemType | None = None
    invoice: InvoiceType | None = None


# =========================================================================
# Converters
# =========================================================================


def _convert_line_item(item: LineItem) -> LineItemType:
    return LineItemType(
        id=item.pk,
        line_type=item.line_type,
        description=item.description,
        quantity=item.quantity,
        rate=item.rate,
        amount=item.amount,
        amount_display=format_currency(item.amount),
    )


def _convert_invoice(invoice: Invoice) -> InvoiceType:
    items = list(invoice.line_items.all())
    return InvoiceType(
        id=invoice.pk,
        number=invoice.number,
        organization_id=invoice.organization_id,
        organization_name=invoice.organization.name,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        status_label=invoice.get_status_display(),
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
        balance=invoice.balance,
        total_display=format_currency(invoice.total_amount),
        balance_display=format_currency(invoice.balance),
        has_late_fee=any(item.line_type == LineItem.LineType.LATE_FEE for item in items),
        pdf_url=invoice.pdf.url if invoice.pdf else None,
        line_items=[_convert_line_item(item) for item in items],
    )


def _reload(invoice_id: int) -> InvoiceType:
    invoice = (
        Invoice.objects
        .select_related("organization")
        .prefetch_related("line_items")
        .get(pk=invoice_id)
    )
    return _convert_invoice(invoice)


# =========================================================================
# Queries
# =========================================================================


@strawberry.type
class BillingQuery:
    """Billing-related queries."""

    @strawberry.field
    def invoices(
        self,
        info: Info[Context, None],
        organization_id: int | None = None,
        project_id: int | None = None,
        milestone_id: int | None = None,
        monthly_report_id: int | None = None,
    ) -> List[InvoiceType]:
        """List invoices by organization, project (direct and via milestones), milestone or report."""
        require_perm(info, "billing.view_invoice")
        builder = InvoiceBuilder(info.context.billing(organization_id))
        if project_id is not None:
            queryset = builder.for_project(project_id)
        elif milestone_id is not None:
            queryset = builder.for_milestone(milestone_id)
        elif monthly_report_id is not None:
            queryset = builder.for_monthly_report(monthly_report_id)
        elif organization_id is not None:
            queryset = builder.for_organization(organization_id)
        else:
            queryset = builder.visible_invoices()
        return [_convert_invoice(inv) for inv in queryset.prefetch_related("line_items")]

    @strawberry.field
    def invoice(self, info: Info[Context, None], id: int) -> InvoiceType | None:
        require_perm(info, "billing.view_invoice")
        try:
            return _reload(id)
        except Invoice.DoesNotExist:
            return None

    @strawberry.field
    def invoice_ledger(self, info: Info[Context, None], invoice_id: int) -> LedgerSummaryType | None:
        """Payment totals and outstanding balance of an invoice."""
        require_perm(info, "billing.view_invoice")
        try:
            summary = PaymentLedger(info.context.billing()).summary(invoice_id)
        except NotFound:
            return None
        return LedgerSummaryType(
            total=summary.total,
            paid=summary.paid,
            fees=summary.fees,
            balance=summary.balance,
            payment_count=summary.payment_count,
        )

    @strawberry.field
    def invoice_payments(self, info: Info[Context, None], invoice_id: int) -> List[PaymentType]:
        require_perm(info, "billing.view_invoice")
        return list(Payment.objects.filter(invoice_id=invoice_id))

    @strawberry.field
    def project_invoice_totals(self, info: Info[Context, None], project_id: int) -> ProjectTotalsType:
        """Invoiced and paid sums for a project, excluding cancelled invoices."""
        require_perm(info, "billing.view_invoice")
        totals = InvoiceBuilder(info.context.billing()).project_totals(project_id)
        return ProjectTotalsType(
            invoiced=totals.invoiced,
            paid=totals.paid,
            outstanding=totals.outstanding,
            invoiced_display=format_currency(totals.invoiced),
            paid_display=format_currency(totals.paid),
        )

    @strawberry.field
    def project_progress(self, info: Info[Context, None], project_id: int) -> ProjectProgressType | None:
        """Budget, invoicing and payment progress with per-milestone payment status."""
        require_perm(info, "billing.view_invoice")
        try:
            progress = InvoiceBuilder(info.context.billing()).project_progress(project_id)
        except NotFound:
            return None
        return ProjectProgressType(
            budget=progress.budget,
            invoiced=progress.invoiced,
            paid=progress.paid,
            invoiced_percent=progress.invoiced_percent,
            paid_percent=progress.paid_percent,
            billable_hours=progress.billable_hours,
            budget_display=format_currency(progress.budget),
            pending_milestones=progress.milestone_count(Milestone.PaymentStatus.PENDING),
            invoiced_milestones=progress.milestone_count(Milestone.PaymentStatus.INVOICED),
            paid_milestones=progress.milestone_count(Milestone.PaymentStatus.PAID),
            milestones=[
                MilestonePaymentType(
                    milestone_id=row.milestone_id,
                    name=row.name,
                    amount=row.amount,
                    invoiced=row.invoiced,
                    paid=row.paid,
                    payment_status=row.payment_status,
                )
                for row in progress.milestones
            ],
        )

    @strawberry.field
    def free_hours_progress(
        self, info: Info[Context, None], monthly_report_id: int
    ) -> FreeHoursProgressType | None:
        require_perm(info, "billing.view_invoice")
        try:
            source = source_for("monthly_report", monthly_report_id)
        except NotFound:
            return None
        progress = HoursAggregator(info.context.billing()).free_hours_progress(source)
        return FreeHoursProgressType(
            used=progress.used,
            limit=progress.limit,
            percent=progress.percent,
            percent_raw=progress.percent_raw,
            remaining=progress.remaining,
            overage_hours=progress.overage_hours,
            overage_amount=progress.overage_amount,
        )

    @strawberry.field
    def billing_alert_counts(
        self, info: Info[Context, None], organization_id: int | None = None
    ) -> AlertCountsType:
        """Cached badge counts for the dashboard."""
        require_perm(info, "billing.view_invoice")
        counts = cached_alert_counts(info.context.billing(organization_id))
        return AlertCountsType(
            overdue_invoices=counts.overdue_invoices,
            invoices_due_soon=counts.invoices_due_soon,
            reports_needing_invoices=counts.reports_needing_invoices,
            new_service_requests=counts.new_service_requests,
            in_progress_service_requests=counts.in_progress_service_requests,
            overdue_tasks=counts.overdue_tasks,
            tasks_due_soon=counts.tasks_due_soon,
            total=counts.total,
        )

    @strawberry.field
    def billing_alerts(
        self, info: Info[Context, None], organization_id: int | None = None
    ) -> BillingAlertsType:
        require_perm(info, "billing.view_invoice")
        alerts = BillingAlertsAggregator(info.context.billing(organization_id))
        overdue = alerts.overdue_invoices()
        due_soon = alerts.invoices_due_soon()
        reports = alerts.reports_needing_invoices()
        requests = alerts.new_service_requests()
        overdue_tasks = alerts.overdue_tasks()
        tasks_due_soon = alerts.tasks_due_soon()
        return BillingAlertsType(
            overdue_invoices=[
                OverdueInvoiceAlertType(
                    invoice_id=row.invoice_id,
                    number=row.number,
                    organization_name=row.organization_name,
                    due_date=row.due_date,
                    balance=row.balance,
                    days_overdue=row.days_overdue,
                    has_late_fee=row.has_late_fee,
                )
                for row in overdue
            ],
            invoices_due_soon=[
                DueSoonInvoiceAlertType(
                    invoice_id=row.invoice_id,
                    number=row.number,
                    organization_name=row.organization_name,
                    due_date=row.due_date,
                    balance=row.balance,
                    days_until_due=row.days_until_due,
                )
                for row in due_soon
            ],
            reports_needing_invoices=[
                ReportAlertType(
                    report_id=row.report_id,
                    report_number=row.report_number,
                    organization_name=row.organization_name,
                    report_month=row.report_month,
                )
                for row in reports
            ],
            new_service_requests=[
                ServiceRequestAlertType(
                    service_request_id=row.service_request_id,
                    reference_number=row.reference_number,
                    organization_name=row.organization_name,
                    subject=row.subject,
                )
                for row in requests
            ],
            overdue_tasks=[_convert_task(row) for row in overdue_tasks],
            tasks_due_soon=[_convert_task(row) for row in tasks_due_soon],
            in_progress_service_requests=alerts.in_progress_service_request_count(),
            total=(
                len(overdue) + len(due_soon) + len(reports)
                + len(requests) + len(overdue_tasks) + len(tasks_due_soon)
            ),
        )


def _convert_task(row) -> TaskAlertType:
    return TaskAlertType(
        task_id=row.task_id,
        organization_name=row.organization_name,
        description=row.description,
        due_date=row.due_date,
        days_overdue=row.days_overdue,
        days_until_due=row.days_until_due,
    )


# =========================================================================
# Mutations
# =========================================================================


@strawberry.type
class BillingMutation:
    """Billing mutations. Failures are reported in the result, never raised."""

    @strawberry.mutation
    def generate_invoice(
        self, info: Info[Context, None], source: InvoiceSourceKind, source_id: int
    ) -> InvoiceResult:
        """Build and finalize an invoice from a milestone, monthly report or project."""
        user, err = check_perm(info, "billing.add_invoice")
        if err:
            return InvoiceResult(success=False, error=err)

        builder = InvoiceBuilder(info.context.billing())
        try:
            invoice = builder.build(source_for(source.value, source_id))
        except BillingError as e:
            return InvoiceResult(
                success=False,
                error=e.code,
                message=e.message,
                invoice_id=getattr(e, "invoice_id", None),
            )
        return InvoiceResult(success=True, invoice_id=invoice.pk, invoice=_reload(invoice.pk))

    @strawberry.mutation
    def finalize_invoice(self, info: Info[Context, None], invoice_id: int) -> InvoiceResult:
        """Retry finalizing a draft invoice."""
        user, err = check_perm(info, "billing.add_invoice")
        if err:
            return InvoiceResult(success=False, error=err)

        try:
            invoice = InvoiceBuilder(info.context.billing()).finalize(invoice_id)
        except BillingError as e:
            return InvoiceResult(success=False, error=e.code, message=e.message, invoice_id=invoice_id)
        return InvoiceResult(success=True, invoice_id=invoice.pk, invoice=_reload(invoice.pk))

    @strawberry.mutation
    def cancel_invoice(self, info: Info[Context, None], invoice_id: int) -> InvoiceResult:
        """Cancel an invoice and release its source for re-invoicing."""
        user, err = check_perm(info, "billing.change_invoice")
        if err:
            return InvoiceResult(success=False, error=err)

        try:
            invoice = InvoiceBuilder(info.context.billing()).cancel(invoice_id)
        except BillingError as e:
            return InvoiceResult(success=False, error=e.code, message=e.message, invoice_id=invoice_id)
        return InvoiceResult(success=True, invoice_id=invoice.pk, invoice=_reload(invoice.pk))

    @strawberry.mutation
    def record_payment(self, info: Info[Context, None], input: RecordPaymentInput) -> PaymentResult:
        user, err = check_perm(info, "billing.add_payment")
        if err:
            return PaymentResult(success=False, error=err)

        ledger = PaymentLedger(info.context.billing())
        try:
            payment = ledger.record_payment(
                input.invoice_id,
                input.amount,
                input.method.value,
                transaction_reference=input.transaction_reference,
                fee=input.fee,
            )
        except BillingError as e:
            return PaymentResult(success=False, error=e.code, message=e.message)
        return PaymentResult(
            success=True,
            payment=payment,
            invoice=_reload(input.invoice_id),
        )

    @strawberry.mutation
    def apply_late_fee(self, info: Info[Context, None], invoice_id: int) -> LateFeeResult:
        user, err = check_perm(info, "billing.change_invoice")
        if err:
            return LateFeeResult(success=False, error=err)

        try:
            line = LateFeeApplier(info.context.billing()).add_late_fee(invoice_id)
        except BillingError as e:
            return LateFeeResult(success=False, error=e.code, message=e.message)
        return LateFeeResult(
            success=True,
            line_item=_convert_line_item(line),
            invoice=_reload(invoice_id),
        )
