"""Billing alerts: read-only queries behind the dashboard badges and lists."""
import logging
from datetime import timedelta

from django.db.models import Exists, OuterRef, QuerySet

from apps.billing.conf import billing_setting
from apps.billing.exceptions import store_errors
from apps.billing.models import Invoice, LineItem, MonthlyReport
from apps.billing.types import (
    AlertCounts,
    DueSoonInvoiceRow,
    OverdueInvoiceRow,
    ReportNeedingInvoiceRow,
    ServiceRequestRow,
    TaskRow,
)
from apps.core.context import BillingContext
from apps.projects.models import ClientTask, ServiceRequest

logger = logging.getLogger(__name__)


class BillingAlertsAggregator:
    """Collects billing alerts, optionally scoped to the context's organization."""

    def __init__(self, context: BillingContext):
        self.context = context

    @property
    def today(self):
        return self.context.today

    def overdue_invoices(self) -> list[OverdueInvoiceRow]:
        """Unsettled invoices past their due date, most overdue first."""
        with store_errors():
            invoices = list(
                self._scoped(Invoice.objects.select_related("organization"))
                .filter(status__in=Invoice.OPEN_STATUSES, due_date__lt=self.today)
                .annotate(has_late_fee=Exists(self._late_fee_lines()))
                .order_by("due_date", "id")
            )
        logger.debug("Found %d overdue invoices", len(invoices))
        return [
            OverdueInvoiceRow(
                invoice_id=invoice.pk,
                number=invoice.number,
                organization_id=invoice.organization_id,
                organization_name=invoice.organization.name,
                due_date=invoice.due_date,
                balance=invoice.balance,
                days_overdue=(self.today - invoice.due_date).days,
                has_late_fee=invoice.has_late_fee,
            )
            for invoice in invoices
        ]

    def invoices_due_soon(self, days: int | None = None) -> list[DueSoonInvoiceRow]:
        """Finalized, unsettled invoices due within the window. Drafts have no number yet."""
        if days is None:
            days = billing_setting("INVOICE_DUE_SOON_DAYS")
        with store_errors():
            invoices = list(
                self._scoped(Invoice.objects.select_related("organization"))
                .filter(status__in=Invoice.OPEN_STATUSES)
                .filter(due_date__gte=self.today, due_date__lte=self.today + timedelta(days=days))
                .order_by("due_date", "id")
            )
        return [
            DueSoonInvoiceRow(
                invoice_id=invoice.pk,
                number=invoice.number,
                organization_id=invoice.organization_id,
                organization_name=invoice.organization.name,
                due_date=invoice.due_date,
                balance=invoice.balance,
                days_until_due=(invoice.due_date - self.today).days,
            )
            for invoice in invoices
        ]

    def reports_needing_invoices(self) -> list[ReportNeedingInvoiceRow]:
        """Monthly reports for finished months without an open invoice."""
        open_invoices = Invoice.objects.filter(monthly_report=OuterRef("pk")).exclude(
            status=Invoice.Status.CANCELLED
        )
        with store_errors():
            reports = list(
                self._scoped(MonthlyReport.objects.select_related("organization"))
                .filter(report_month__lt=self.today.replace(day=1))
                .exclude(Exists(open_invoices))
                .order_by("report_month", "id")
            )
        return [
            ReportNeedingInvoiceRow(
                report_id=report.pk,
                report_number=report.report_number,
                organization_id=report.organization_id,
                organization_name=report.organization.name,
                report_month=report.report_month,
            )
            for report in reports
        ]

    def new_service_requests(self) -> list[ServiceRequestRow]:
        with store_errors():
            requests = list(
                self._scoped(ServiceRequest.objects.select_related("organization"))
                .filter(status=ServiceRequest.Status.NEW)
                .order_by("created_at", "id")
            )
        return [
            ServiceRequestRow(
                service_request_id=request.pk,
                reference_number=request.reference_number,
                organization_id=request.organization_id,
                organization_name=request.organization.name,
                subject=request.subject,
            )
            for request in requests
        ]

    def in_progress_service_request_count(self) -> int:
        with store_errors():
            return (
                self._scoped(ServiceRequest.objects)
                .filter(status__in=ServiceRequest.IN_PROGRESS_STATUSES)
                .count()
            )

    def overdue_tasks(self) -> list[TaskRow]:
        with store_errors():
            tasks = list(
                self._pending_tasks()
                .filter(due_date__lt=self.today)
                .order_by("due_date", "id")
            )
        return [
            TaskRow(
                task_id=task.pk,
                organization_id=task.organization_id,
                organization_name=task.organization.name,
                description=task.description,
                due_date=task.due_date,
                days_overdue=(self.today - task.due_date).days,
            )
            for task in tasks
        ]

    def tasks_due_soon(self, days: int | None = None) -> list[TaskRow]:
        if days is None:
            days = billing_setting("TASK_DUE_SOON_DAYS")
        with store_errors():
            tasks = list(
                self._pending_tasks()
                .filter(due_date__gte=self.today, due_date__lte=self.today + timedelta(days=days))
                .order_by("due_date", "id")
            )
        return [
            TaskRow(
                task_id=task.pk,
                organization_id=task.organization_id,
                organization_name=task.organization.name,
                description=task.description,
                due_date=task.due_date,
                days_until_due=(task.due_date - self.today).days,
            )
            for task in tasks
        ]

    def total_alert_count(self) -> int:
        return self.counts().total

    def invoice_has_late_fee(self, invoice_id: int) -> bool:
        with store_errors():
            return LineItem.objects.filter(
                invoice_id=invoice_id, line_type=LineItem.LineType.LATE_FEE
            ).exists()

    def counts(self) -> AlertCounts:
        return AlertCounts(
            overdue_invoices=len(self.overdue_invoices()),
            invoices_due_soon=len(self.invoices_due_soon()),
            reports_needing_invoices=len(self.reports_needing_invoices()),
            new_service_requests=len(self.new_service_requests()),
            in_progress_service_requests=self.in_progress_service_request_count(),
            overdue_tasks=len(self.overdue_tasks()),
            tasks_due_soon=len(self.tasks_due_soon()),
        )

    def _pending_tasks(self) -> QuerySet:
        return self._scoped(ClientTask.objects.select_related("organization")).filter(
            status=ClientTask.Status.PENDING, due_date__isnull=False
        )

    def _scoped(self, queryset) -> QuerySet:
        if self.context.organization_id is not None:
            return queryset.filter(organization_id=self.context.organization_id)
        return queryset.all()

    @staticmethod
    def _late_fee_lines() -> QuerySet:
        return LineItem.objects.filter(
            invoice=OuterRef("pk"), line_type=LineItem.LineType.LATE_FEE
        )
