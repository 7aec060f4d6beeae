"""Tests for invoice generation from milestones, monthly reports and project closeouts."""
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from apps.billing.exceptions import (
    AlreadyInvoiced,
    InvalidTransition,
    InvoiceCancelled,
    NoBillableHours,
    NotFound,
    SequenceExhausted,
)
from apps.billing.ledger import PaymentLedger
from apps.billing.models import Invoice, LineItem, MonthlyReport
from apps.billing.numbering import ReferenceNumberGenerator
from apps.billing.services import InvoiceBuilder
from apps.billing.sources import MilestoneSource
from apps.projects.models import Milestone, ServiceRequest


@pytest.fixture
def builder(billing_context):
    return InvoiceBuilder(billing_context)


class TestMilestoneInvoice:

    def test_builds_numbered_pending_invoice(self, builder, milestone, make_entry):
        make_entry("2.5", billable=True, milestone=milestone)
        make_entry("1.0", billable=False, milestone=milestone)
        make_entry("3.0", milestone=milestone)

        invoice = builder.from_milestone(milestone.pk)

        assert invoice.number == "BBB-2412-001"
        assert invoice.status == Invoice.Status.PENDING
        assert invoice.invoice_type == Invoice.InvoiceType.MILESTONE
        assert invoice.issue_date == date(2024, 12, 10)
        assert invoice.due_date == date(2024, 12, 25)
        assert invoice.total_amount == Decimal("165.00")
        assert invoice.finalized_at is not None

        line = invoice.line_items.get()
        assert line.line_type == LineItem.LineType.HOURS
        assert line.quantity == Decimal("5.50")
        assert line.rate == Decimal("30.00")
        assert line.amount == Decimal("165.00")
        assert line.time_entries.count() == 2

    def test_second_build_is_refused(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)
        first = builder.from_milestone(milestone.pk)

        with pytest.raises(AlreadyInvoiced) as exc_info:
            builder.from_milestone(milestone.pk)

        assert exc_info.value.invoice_id == first.pk
        assert Invoice.objects.filter(milestone=milestone).count() == 1

    def test_missing_milestone(self, builder, db):
        with pytest.raises(NotFound):
            builder.from_milestone(999)

    def test_total_matches_line_items(self, builder, milestone, make_entry):
        make_entry("1.0", milestone=milestone, hourly_rate=Decimal("45.00"))
        make_entry("2.0", milestone=milestone, work_type="design")
        invoice = builder.from_milestone(milestone.pk)
        assert invoice.total_amount == invoice.line_items_total()

    def test_rate_resolution(self, builder, organization, milestone, make_entry):
        organization.hourly_rate = Decimal("40.00")
        organization.save()
        make_entry("1.0", milestone=milestone, hourly_rate=Decimal("50.00"))
        make_entry("1.0", milestone=milestone)

        invoice = builder.from_milestone(milestone.pk)

        rates = sorted(line.rate for line in invoice.line_items.all())
        assert rates == [Decimal("40.00"), Decimal("50.00")]
        assert invoice.total_amount == Decimal("90.00")

    def test_buckets_by_work_type(self, builder, milestone, make_entry):
        make_entry("1.0", milestone=milestone, work_type="design")
        make_entry("1.0", milestone=milestone, work_type="development")
        make_entry("0.5", milestone=milestone, work_type="design")

        invoice = builder.from_milestone(milestone.pk)

        quantities = {line.description: line.quantity for line in invoice.line_items.all()}
        assert quantities == {
            "Design (design)": Decimal("1.50"),
            "Design (development)": Decimal("1.00"),
        }

    def test_quantities_round_up_to_quarter_hour(self, builder, milestone, make_entry):
        make_entry("1.1", milestone=milestone)
        invoice = builder.from_milestone(milestone.pk)
        line = invoice.line_items.get()
        assert line.quantity == Decimal("1.25")
        assert line.amount == Decimal("37.50")

    def test_allowance_taken_from_highest_rate_first(self, builder, milestone, make_entry):
        milestone.free_hours = Decimal("1.00")
        milestone.save()
        make_entry("2.0", milestone=milestone, hourly_rate=Decimal("50.00"))
        make_entry("2.0", milestone=milestone, hourly_rate=Decimal("30.00"))

        invoice = builder.from_milestone(milestone.pk)

        amounts = {line.rate: line.amount for line in invoice.line_items.all()}
        assert amounts == {Decimal("50.00"): Decimal("50.00"), Decimal("30.00"): Decimal("60.00")}
        assert invoice.total_amount == Decimal("110.00")

    def test_fixed_price_milestone(self, builder, project, make_entry):
        fixed = Milestone.objects.create(
            project=project, name="Launch", order=2, amount=Decimal("500.00")
        )
        entry = make_entry("12.0", milestone=fixed)

        invoice = builder.from_milestone(fixed.pk)

        line = invoice.line_items.get()
        assert line.line_type == LineItem.LineType.MILESTONE
        assert line.quantity == Decimal("1.00")
        assert line.amount == Decimal("500.00")
        assert list(line.time_entries.all()) == [entry]
        assert invoice.total_amount == Decimal("500.00")

    def test_payment_terms_from_organization(self, builder, organization, milestone, make_entry):
        organization.payment_terms_days = 30
        organization.save()
        make_entry("1.0", milestone=milestone)
        invoice = builder.from_milestone(milestone.pk)
        assert invoice.due_date == date(2025, 1, 9)


class TestNoBillableHours:

    def test_only_non_billable_entries(self, builder, milestone, make_entry):
        make_entry("3.0", billable=False, milestone=milestone)
        with pytest.raises(NoBillableHours):
            builder.from_milestone(milestone.pk)
        assert not Invoice.objects.exists()

    def test_all_hours_covered_by_allowance(self, builder, milestone, make_entry):
        milestone.free_hours = Decimal("5.00")
        milestone.save()
        make_entry("2.0", milestone=milestone)
        with pytest.raises(NoBillableHours):
            builder.from_milestone(milestone.pk)

    def test_zero_amount_invoices_enabled(self, builder, milestone, make_entry, settings):
        settings.BILLING = {**settings.BILLING, "ALLOW_ZERO_AMOUNT_INVOICES": True}
        make_entry("3.0", billable=False, milestone=milestone)

        invoice = builder.from_milestone(milestone.pk)

        assert invoice.total_amount == Decimal("0.00")
        assert invoice.number == "BBB-2412-001"
        assert invoice.status == Invoice.Status.PAID
        invoice.refresh_from_db()
        assert invoice.paid_at is not None
        assert invoice.paid_at == invoice.finalized_at


class TestMonthlyReportInvoice:

    def test_uses_service_request_hours_of_the_month(self, builder, organization, service_request, make_entry):
        report = MonthlyReport.objects.create(
            organization=organization,
            report_month=date(2024, 11, 1),
            free_hours_limit=Decimal("1.00"),
        )
        make_entry("2.0", service_request=service_request, entry_date=date(2024, 11, 4))
        make_entry("1.5", service_request=service_request, entry_date=date(2024, 11, 29))
        make_entry("4.0", service_request=service_request, entry_date=date(2024, 12, 1))
        other = ServiceRequest.objects.create(organization=organization, subject="Backups")
        make_entry("0.5", service_request=other, entry_date=date(2024, 11, 15))

        invoice = builder.from_monthly_report(report.pk)

        assert invoice.invoice_type == Invoice.InvoiceType.MONTHLY
        assert invoice.monthly_report == report
        assert invoice.number == "BBB-2411-001"
        assert invoice.line_items.count() == 2
        # 4.0 billable hours minus the 1.0 free hour
        assert sum(line.quantity for line in invoice.line_items.all()) == Decimal("3.00")
        assert invoice.total_amount == Decimal("90.00")
        assert all(line.monthly_report_id == report.pk for line in invoice.line_items.all())


class TestProjectCloseout:

    def test_excludes_hours_already_invoiced(self, builder, project, milestone, organization, make_entry):
        make_entry("2.0", milestone=milestone)
        builder.from_milestone(milestone.pk)

        request = ServiceRequest.objects.create(organization=organization, project=project, subject="Fixes")
        make_entry("1.0", service_request=request)
        project.closed_on = date(2024, 12, 20)
        project.save()

        closeout = builder.closeout_from_project(project.pk)

        assert closeout.invoice_type == Invoice.InvoiceType.CLOSEOUT
        assert closeout.total_amount == Decimal("30.00")
        assert closeout.line_items.get().service_request_id == request.pk

    def test_project_listing_and_totals(self, builder, project, milestone, organization, make_entry):
        make_entry("2.0", milestone=milestone)
        milestone_invoice = builder.from_milestone(milestone.pk)
        request = ServiceRequest.objects.create(organization=organization, project=project, subject="Fixes")
        make_entry("1.0", service_request=request)
        closeout = builder.closeout_from_project(project.pk)
        PaymentLedger(builder.context).record_payment(milestone_invoice.pk, "60.00", "card")

        assert set(builder.for_project(project.pk)) == {milestone_invoice, closeout}
        assert list(builder.for_milestone(milestone.pk)) == [milestone_invoice]

        totals = builder.project_totals(project.pk)
        assert totals.invoiced == Decimal("90.00")
        assert totals.paid == Decimal("60.00")

        builder.cancel(closeout.pk)
        assert builder.project_totals(project.pk).invoiced == Decimal("60.00")


class TestProjectProgress:

    @pytest.fixture
    def hosting(self, project):
        return Milestone.objects.create(project=project, name="Hosting", order=3, amount=Decimal("50.00"))

    def test_milestone_payment_status(self, builder, fixed_price_invoice, hosting):
        launch = fixed_price_invoice.milestone
        ledger = PaymentLedger(builder.context)
        assert builder.milestone_payment_status(hosting.pk) == Milestone.PaymentStatus.PENDING
        assert builder.milestone_payment_status(launch.pk) == Milestone.PaymentStatus.INVOICED

        ledger.record_payment(fixed_price_invoice.pk, "40.00", "card")
        assert builder.milestone_payment_status(launch.pk) == Milestone.PaymentStatus.INVOICED

        ledger.record_payment(fixed_price_invoice.pk, "60.00", "card")
        assert builder.milestone_payment_status(launch.pk) == Milestone.PaymentStatus.PAID

    def test_hourly_milestone_is_paid_when_its_invoices_are(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)
        invoice = builder.from_milestone(milestone.pk)
        assert builder.milestone_payment_status(milestone.pk) == Milestone.PaymentStatus.INVOICED

        PaymentLedger(builder.context).record_payment(invoice.pk, "60.00", "card")
        assert builder.milestone_payment_status(milestone.pk) == Milestone.PaymentStatus.PAID

    def test_cancelled_invoice_leaves_milestone_pending(self, builder, fixed_price_invoice):
        builder.cancel(fixed_price_invoice.pk)
        status = builder.milestone_payment_status(fixed_price_invoice.milestone_id)
        assert status == Milestone.PaymentStatus.PENDING

    def test_missing_milestone(self, builder, db):
        with pytest.raises(NotFound):
            builder.milestone_payment_status(4242)

    def test_project_summary(self, builder, project, milestone, fixed_price_invoice, hosting, make_entry):
        make_entry("2.0", milestone=milestone)
        design_invoice = builder.from_milestone(milestone.pk)
        ledger = PaymentLedger(builder.context)
        ledger.record_payment(design_invoice.pk, "60.00", "card")
        ledger.record_payment(fixed_price_invoice.pk, "40.00", "card")

        progress = builder.project_progress(project.pk)

        assert progress.budget == Decimal("150.00")
        assert progress.invoiced == Decimal("160.00")
        assert progress.paid == Decimal("100.00")
        assert progress.invoiced_percent == Decimal("106.7")
        assert progress.paid_percent == Decimal("66.7")
        assert progress.billable_hours == Decimal("2.00")
        assert [(m.name, m.payment_status) for m in progress.milestones] == [
            ("Design", Milestone.PaymentStatus.PAID),
            ("Launch", Milestone.PaymentStatus.INVOICED),
            ("Hosting", Milestone.PaymentStatus.PENDING),
        ]
        assert progress.milestone_count(Milestone.PaymentStatus.PENDING) == 1
        assert progress.milestone_count(Milestone.PaymentStatus.PAID) == 1

    def test_project_without_budget(self, builder, project, milestone):
        progress = builder.project_progress(project.pk)
        assert progress.budget == Decimal("0.00")
        assert progress.invoiced_percent == Decimal("0.0")
        assert progress.paid_percent == Decimal("0.0")
        assert progress.milestones[0].payment_status == Milestone.PaymentStatus.PENDING

    def test_missing_project(self, builder, db):
        with pytest.raises(NotFound):
            builder.project_progress(4242)


class TestCancellation:

    def test_cancel_releases_source_and_entries(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)
        first = builder.from_milestone(milestone.pk)

        cancelled = builder.cancel(first.pk)
        assert cancelled.status == Invoice.Status.CANCELLED
        assert cancelled.cancelled_at is not None

        second = builder.from_milestone(milestone.pk)
        assert second.pk != first.pk
        assert second.number == "BBB-2412-002"
        assert second.total_amount == Decimal("60.00")

    def test_cancel_is_idempotent(self, builder, fixed_price_invoice):
        builder.cancel(fixed_price_invoice.pk)
        assert builder.cancel(fixed_price_invoice.pk).status == Invoice.Status.CANCELLED

    def test_paid_invoice_cannot_be_cancelled(self, builder, fixed_price_invoice):
        PaymentLedger(builder.context).record_payment(fixed_price_invoice.pk, "100.00", "bank_transfer")
        with pytest.raises(InvalidTransition):
            builder.cancel(fixed_price_invoice.pk)

    def test_finalizing_cancelled_draft(self, builder, milestone, make_entry):
        make_entry("1.0", milestone=milestone)
        with patch.object(ReferenceNumberGenerator, "generate", side_effect=SequenceExhausted()):
            with pytest.raises(SequenceExhausted) as exc_info:
                builder.from_milestone(milestone.pk)
        draft_id = exc_info.value.invoice_id
        builder.cancel(draft_id)
        with pytest.raises(InvoiceCancelled):
            builder.finalize(draft_id)


class TestPartialFailure:

    def test_draft_survives_failed_finalize(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)

        with patch.object(ReferenceNumberGenerator, "generate", side_effect=SequenceExhausted()):
            with pytest.raises(SequenceExhausted) as exc_info:
                builder.from_milestone(milestone.pk)

        draft = Invoice.objects.get(pk=exc_info.value.invoice_id)
        assert draft.status == Invoice.Status.DRAFT
        assert draft.number == ""
        assert draft.line_items.count() == 1

        invoice = builder.finalize(draft.pk)
        assert invoice.number == "BBB-2412-001"
        assert invoice.status == Invoice.Status.PENDING

        again = builder.finalize(draft.pk)
        assert again.number == "BBB-2412-001"

    def test_retrying_build_reports_existing_draft(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)
        with patch.object(ReferenceNumberGenerator, "generate", side_effect=SequenceExhausted()):
            with pytest.raises(SequenceExhausted) as exc_info:
                builder.from_milestone(milestone.pk)

        with pytest.raises(AlreadyInvoiced) as again:
            builder.from_milestone(milestone.pk)
        assert again.value.invoice_id == exc_info.value.invoice_id

    def test_concurrent_duplicate_insert(self, builder, milestone, make_entry):
        make_entry("2.0", milestone=milestone)
        builder.from_milestone(milestone.pk)
        make_entry("1.0", milestone=milestone)

        # Simulate a second worker whose pre-check ran before the first insert
        with patch.object(MilestoneSource, "open_invoice", return_value=None):
            with pytest.raises(AlreadyInvoiced):
                builder.from_milestone(milestone.pk)

        assert Invoice.objects.filter(milestone=milestone).count() == 1


class TestPdfOnFinalize:

    def test_queues_pdf_render_after_commit(
        self, builder, milestone, make_entry, settings, django_capture_on_commit_callbacks
    ):
        settings.BILLING = {**settings.BILLING, "RENDER_PDF_ON_FINALIZE": True}
        make_entry("1.0", milestone=milestone)

        with patch("apps.billing.tasks.render_invoice_pdf.delay") as delay:
            with django_capture_on_commit_callbacks(execute=True):
                invoice = builder.from_milestone(milestone.pk)

        delay.assert_called_once_with(invoice.pk)

    def test_disabled_in_settings(self, builder, milestone, make_entry, django_capture_on_commit_callbacks):
        make_entry("1.0", milestone=milestone)
        with patch("apps.billing.tasks.render_invoice_pdf.delay") as delay:
            with django_capture_on_commit_callbacks(execute=True):
                builder.from_milestone(milestone.pk)
        delay.assert_not_called()
