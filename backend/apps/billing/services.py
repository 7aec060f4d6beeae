"""Invoice builder: turns billable hours of a source into a numbered invoice."""
import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.utils import timezone

from apps.billing.conf import billing_decimal, billing_setting
from apps.billing.exceptions import (
    AlreadyInvoiced,
    BillingError,
    InvalidTransition,
    InvoiceCancelled,
    NoBillableHours,
    NotFound,
    store_errors,
)
from apps.billing.hours import HoursAggregator, round_up_hours
from apps.billing.models import Invoice, LineItem
from apps.billing.numbering import ReferenceNumberGenerator
from apps.billing.sources import (
    BillingSource,
    MilestoneSource,
    MonthlyReportSource,
    ProjectSource,
    source_for,
)
from apps.billing.status import status_for
from apps.billing.types import BillingBucket, MilestonePayment, ProjectProgress, ProjectTotals
from apps.core.context import BillingContext
from apps.projects.models import Milestone, Project

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class InvoiceBuilder:
    """
    Creates invoices from milestones, monthly reports and project closeouts.

    An invoice is first stored as a draft together with its line items and
    then finalized, which assigns its number. If finalizing fails the draft
    stays in place and ``finalize`` can be called again.
    """

    def __init__(self, context: BillingContext):
        self.context = context
        self.numbers = ReferenceNumberGenerator(context)

    def from_milestone(self, milestone_id: int) -> Invoice:
        return self.build(source_for("milestone", milestone_id))

    def from_monthly_report(self, report_id: int) -> Invoice:
        return self.build(source_for("monthly_report", report_id))

    def closeout_from_project(self, project_id: int) -> Invoice:
        return self.build(source_for("project", project_id))

    def build(self, source: BillingSource) -> Invoice:
        """Create the draft for a source and finalize it."""
        with store_errors():
            invoice = self._create_draft(source)
        return self.finalize(invoice.pk)

    def finalize(self, invoice_id: int) -> Invoice:
        """Assign the invoice number and move the draft to its derived status."""
        try:
            with store_errors(), transaction.atomic():
                invoice = self._locked(invoice_id)
                if invoice.status == Invoice.Status.CANCELLED:
                    raise InvoiceCancelled(f"Invoice {invoice_id} is cancelled")
                if invoice.is_finalized:
                    return invoice

                source = self._source_of(invoice)
                invoice.number = self.numbers.generate(
                    "invoice", source.logical_date(self.context.today)
                )
                invoice.finalized_at = timezone.now()
                invoice.status = status_for(invoice, self.context.today)
                if invoice.status == Invoice.Status.PAID:
                    invoice.paid_at = invoice.finalized_at
                invoice.save(
                    update_fields=["number", "finalized_at", "status", "paid_at", "updated_at"]
                )

                if billing_setting("RENDER_PDF_ON_FINALIZE"):
                    transaction.on_commit(lambda: _queue_pdf(invoice.pk))
        except BillingError as e:
            if getattr(e, "invoice_id", None) is None:
                e.invoice_id = invoice_id
            logger.warning("Finalizing invoice %s failed: %s", invoice_id, e.code)
            raise

        logger.info("Finalized invoice %s as %s", invoice.pk, invoice.number)
        return invoice

    def cancel(self, invoice_id: int) -> Invoice:
        """Cancel an invoice, releasing its source and time entries for re-invoicing."""
        with store_errors(), transaction.atomic():
            invoice = self._locked(invoice_id)
            if invoice.status == Invoice.Status.CANCELLED:
                return invoice
            if invoice.status == Invoice.Status.PAID:
                raise InvalidTransition(
                    f"Invoice {invoice_id} is paid and cannot be cancelled",
                    invoice_id=invoice_id,
                )
            invoice.status = Invoice.Status.CANCELLED
            invoice.cancelled_at = timezone.now()
            invoice.save(update_fields=["status", "cancelled_at", "updated_at"])

        logger.info("Cancelled invoice %s", invoice.pk)
        return invoice

    # --- Queries ---

    def for_organization(self, organization_id: int) -> QuerySet:
        return self.visible_invoices().filter(organization_id=organization_id)

    def for_project(self, project_id: int) -> QuerySet:
        """Closeout invoices of the project and the invoices of its milestones."""
        return self.visible_invoices().filter(
            Q(project_id=project_id) | Q(milestone__project_id=project_id)
        )

    def for_milestone(self, milestone_id: int) -> QuerySet:
        return self.visible_invoices().filter(milestone_id=milestone_id)

    def for_monthly_report(self, report_id: int) -> QuerySet:
        return self.visible_invoices().filter(monthly_report_id=report_id)

    def project_totals(self, project_id: int) -> ProjectTotals:
        totals = (
            self.for_project(project_id)
            .exclude(status=Invoice.Status.CANCELLED)
            .aggregate(invoiced=Sum("total_amount"), paid=Sum("amount_paid"))
        )
        return ProjectTotals(
            invoiced=totals["invoiced"] or Decimal("0.00"),
            paid=totals["paid"] or Decimal("0.00"),
        )

    def milestone_payment_status(self, milestone_id: int) -> str:
        """
        Payment status of a milestone derived from its invoices.

        Pending until a non-cancelled invoice exists. A fixed price milestone
        is paid once payments cover its amount; an hourly one once all of its
        invoices are paid. Anything in between is invoiced.
        """
        with store_errors():
            try:
                milestone = Milestone.objects.get(pk=milestone_id)
            except Milestone.DoesNotExist:
                raise NotFound(f"Milestone {milestone_id} not found", milestone_id=milestone_id) from None
            return self._milestone_payment(milestone).payment_status

    def project_progress(self, project_id: int) -> ProjectProgress:
        with store_errors():
            try:
                project = Project.objects.get(pk=project_id)
            except Project.DoesNotExist:
                raise NotFound(f"Project {project_id} not found", project_id=project_id) from None
            milestones = tuple(
                self._milestone_payment(milestone)
                for milestone in project.milestones.order_by("order", "id")
            )
            totals = self.project_totals(project_id)
            hours = HoursAggregator(self.context).totals(ProjectSource(project))

        budget = sum((m.amount for m in milestones if m.amount), Decimal("0.00"))
        return ProjectProgress(
            budget=budget,
            invoiced=totals.invoiced,
            paid=totals.paid,
            invoiced_percent=_percent(totals.invoiced, budget),
            paid_percent=_percent(totals.paid, budget),
            billable_hours=hours.billable_hours,
            milestones=milestones,
        )

    def visible_invoices(self) -> QuerySet:
        queryset = Invoice.objects.select_related("organization")
        if self.context.organization_id is not None:
            queryset = queryset.filter(organization_id=self.context.organization_id)
        return queryset

    # --- Internals ---

    def _locked(self, invoice_id: int) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id)
        except Invoice.DoesNotExist:
            raise NotFound(f"Invoice {invoice_id} not found", invoice_id=invoice_id) from None

    def _milestone_payment(self, milestone: Milestone) -> MilestonePayment:
        totals = (
            self.for_milestone(milestone.pk)
            .exclude(status=Invoice.Status.CANCELLED)
            .aggregate(
                count=Count("id"),
                unpaid=Count("id", filter=~Q(status=Invoice.Status.PAID)),
                invoiced=Sum("total_amount"),
                paid=Sum("amount_paid"),
            )
        )
        paid = totals["paid"] or Decimal("0.00")
        if not totals["count"]:
            status = Milestone.PaymentStatus.PENDING
        elif milestone.amount:
            status = (
                Milestone.PaymentStatus.PAID
                if paid >= milestone.amount
                else Milestone.PaymentStatus.INVOICED
            )
        elif totals["unpaid"]:
            status = Milestone.PaymentStatus.INVOICED
        else:
            status = Milestone.PaymentStatus.PAID
        return MilestonePayment(
            milestone_id=milestone.pk,
            name=milestone.name,
            amount=milestone.amount,
            invoiced=totals["invoiced"] or Decimal("0.00"),
            paid=paid,
            payment_status=status,
        )

    @staticmethod
    def _source_of(invoice: Invoice) -> BillingSource:
        if invoice.milestone_id:
            return MilestoneSource(invoice.milestone)
        if invoice.monthly_report_id:
            return MonthlyReportSource(invoice.monthly_report)
        return ProjectSource(invoice.project)

    def _create_draft(self, source: BillingSource) -> Invoice:
        existing = source.open_invoice()
        if existing is not None:
            raise AlreadyInvoiced(
                f"{source.source_key} is already invoiced",
                invoice_id=existing.pk,
            )

        organization = source.organization()
        entries = self._unbilled_entries(source)
        lines = self._plan_lines(source, organization, entries)

        if sum((line["quantity"] for line in lines), Decimal("0")) == 0 and not billing_setting(
            "ALLOW_ZERO_AMOUNT_INVOICES"
        ):
            raise NoBillableHours(
                f"{source.source_key} has no billable hours",
                source_key=source.source_key,
            )

        issue_date = self.context.today
        terms = organization.payment_terms_days
        if terms is None:
            terms = billing_setting("PAYMENT_TERMS_DAYS")

        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    organization=organization,
                    invoice_type=source.invoice_type,
                    source_key=source.source_key,
                    issue_date=issue_date,
                    due_date=issue_date + timedelta(days=terms),
                    status=Invoice.Status.DRAFT,
                    total_amount=sum((line["amount"] for line in lines), Decimal("0.00")),
                    **source.invoice_links(),
                )
                for order, line in enumerate(lines):
                    entry_ids = line.pop("entry_ids")
                    item = LineItem.objects.create(
                        invoice=invoice,
                        display_order=order,
                        **source.line_links(),
                        **line,
                    )
                    item.time_entries.set(entry_ids)
        except IntegrityError:
            existing = source.open_invoice()
            raise AlreadyInvoiced(
                f"{source.source_key} was invoiced concurrently",
                invoice_id=existing.pk if existing else None,
            ) from None

        logger.info(
            "Created draft invoice %s for %s with %d lines",
            invoice.pk, source.source_key, len(lines),
        )
        return invoice

    @staticmethod
    def _unbilled_entries(source: BillingSource) -> QuerySet:
        billed = (
            LineItem.objects
            .exclude(invoice__status=Invoice.Status.CANCELLED)
            .filter(time_entries__isnull=False)
            .values("time_entries")
        )
        return (
            source.time_entries()
            .exclude(pk__in=billed)
            .select_related("milestone", "service_request")
            .order_by("entry_date", "id")
        )

    def _plan_lines(self, source: BillingSource, organization, entries) -> list[dict]:
        fixed_amount = source.fixed_amount()
        if fixed_amount is not None:
            return [{
                "line_type": LineItem.LineType.MILESTONE,
                "description": source.describe(),
                "quantity": Decimal("1.00"),
                "rate": fixed_amount,
                "amount": fixed_amount.quantize(CENT, rounding=ROUND_HALF_UP),
                "milestone": source.record,
                "entry_ids": [entry.pk for entry in entries],
            }]

        buckets = self._bucket_entries(entries, organization)
        self._apply_allowance(buckets, source.free_hours())

        lines = []
        for bucket in buckets:
            quantity = round_up_hours(bucket.hours)
            description = bucket.label
            if bucket.work_type:
                description = f"{bucket.label} ({bucket.work_type})"
            lines.append({
                "line_type": LineItem.LineType.HOURS,
                "description": description[:255],
                "quantity": quantity,
                "rate": bucket.rate,
                "amount": (quantity * bucket.rate).quantize(CENT, rounding=ROUND_HALF_UP),
                "milestone_id": bucket.milestone_id,
                "service_request_id": bucket.service_request_id,
                "entry_ids": bucket.entry_ids,
            })
        return lines

    def _bucket_entries(self, entries, organization) -> list[BillingBucket]:
        """Group billable entries by work source, work type and rate, in entry order."""
        buckets: dict[tuple, BillingBucket] = {}
        for entry in entries:
            if not entry.is_billable:
                continue
            rate = self._rate_for(entry, organization)
            key = (entry.milestone_id, entry.service_request_id, entry.work_type, rate)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = BillingBucket(
                    label=self._label_for(entry),
                    work_type=entry.work_type,
                    rate=rate,
                    milestone_id=entry.milestone_id,
                    service_request_id=entry.service_request_id,
                )
            bucket.hours += entry.hours
            bucket.entry_ids.append(entry.pk)
        return list(buckets.values())

    @staticmethod
    def _apply_allowance(buckets: list[BillingBucket], free_hours: Decimal):
        """Subtract free hours from the most expensive buckets first."""
        remaining = max(free_hours, Decimal("0"))
        for bucket in sorted(buckets, key=lambda b: b.rate, reverse=True):
            if remaining <= 0:
                break
            deducted = min(bucket.hours, remaining)
            bucket.hours -= deducted
            remaining -= deducted

    @staticmethod
    def _rate_for(entry, organization) -> Decimal:
        if entry.hourly_rate is not None:
            return entry.hourly_rate
        if organization.hourly_rate is not None:
            return organization.hourly_rate
        return billing_decimal("DEFAULT_HOURLY_RATE")

    @staticmethod
    def _label_for(entry) -> str:
        if entry.milestone_id:
            return entry.milestone.name
        service_request = entry.service_request
        return f"{service_request.reference_number} {service_request.subject}".strip()


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return Decimal("0.0")
    return (part / whole * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _queue_pdf(invoice_id: int):
    from apps.billing.tasks import render_invoice_pdf

    render_invoice_pdf.delay(invoice_id)
