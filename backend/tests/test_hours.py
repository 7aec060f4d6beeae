"""Tests for hour aggregation and free-hours progress."""
import pytest
from datetime import date
from decimal import Decimal

from apps.billing.exceptions import NotFound
from apps.billing.hours import HoursAggregator, round_up_hours
from apps.billing.models import MonthlyReport
from apps.billing.sources import MilestoneSource, MonthlyReportSource


@pytest.fixture
def aggregator(billing_context):
    return HoursAggregator(billing_context)


class TestHoursTotals:

    def test_billable_split(self, aggregator, milestone, make_entry):
        entries = [
            make_entry("2.5", billable=True, milestone=milestone),
            make_entry("1.0", billable=False, milestone=milestone),
            make_entry("3.0", milestone=milestone),
        ]
        totals = aggregator.totals_for_entries(entries)
        assert totals.billable_hours == Decimal("5.5")
        assert totals.non_billable_hours == Decimal("1.0")
        assert totals.total_hours == Decimal("6.5")
        assert totals.entry_count == 3

    def test_totals_for_source(self, aggregator, milestone, make_entry):
        make_entry("2.5", billable=True, milestone=milestone)
        make_entry("1.0", billable=False, milestone=milestone)
        make_entry("3.0", milestone=milestone)
        totals = aggregator.totals(MilestoneSource(milestone))
        assert totals.billable_hours == Decimal("5.5")
        assert totals.entry_count == 3

    def test_totals_by_source_id(self, aggregator, milestone, make_entry):
        make_entry("2.5", milestone=milestone)
        make_entry("1.0", billable=False, milestone=milestone)
        totals = aggregator.totals_for("milestone", milestone.pk)
        assert totals.billable_hours == Decimal("2.5")
        assert totals.non_billable_hours == Decimal("1.0")

    @pytest.mark.parametrize("kind, source_id", [("milestone", 9999), ("invoice", 1)])
    def test_totals_for_unknown_source(self, aggregator, db, kind, source_id):
        with pytest.raises(NotFound):
            aggregator.totals_for(kind, source_id)

    def test_sums_are_exact(self, aggregator, milestone, make_entry):
        entries = [make_entry("0.1", milestone=milestone) for _ in range(3)]
        assert aggregator.totals_for_entries(entries).billable_hours == Decimal("0.30")

    def test_empty(self, aggregator):
        totals = aggregator.totals_for_entries([])
        assert totals.total_hours == 0
        assert totals.entry_count == 0


class TestRoundUpHours:

    @pytest.mark.parametrize(
        "hours,expected",
        [
            ("1.10", "1.25"),
            ("1.00", "1.00"),
            ("0.01", "0.25"),
            ("2.26", "2.50"),
            ("0", "0.00"),
        ],
    )
    def test_quarter_hour(self, hours, expected):
        assert round_up_hours(Decimal(hours)) == Decimal(expected)

    def test_custom_increment(self):
        assert round_up_hours(Decimal("1.1"), Decimal("0.5")) == Decimal("1.50")


class TestFreeHoursProgress:

    @pytest.fixture
    def report(self, organization):
        return MonthlyReport.objects.create(
            organization=organization,
            report_month=date(2024, 12, 1),
            free_hours_limit=Decimal("2.00"),
        )

    def test_overage(self, aggregator, report, service_request, make_entry):
        make_entry("1.1", service_request=service_request, entry_date=date(2024, 12, 3))
        make_entry("1.9", service_request=service_request, entry_date=date(2024, 12, 20))
        make_entry("5.0", service_request=service_request, entry_date=date(2024, 11, 30))
        make_entry("3.0", billable=False, service_request=service_request, entry_date=date(2024, 12, 4))

        progress = aggregator.free_hours_progress(MonthlyReportSource(report))

        assert progress.used == Decimal("3.25")
        assert progress.limit == Decimal("2.00")
        assert progress.percent == 100
        assert progress.percent_raw == Decimal("162.5")
        assert progress.remaining == Decimal("0.00")
        assert progress.overage_hours == Decimal("1.25")
        assert progress.overage_amount == Decimal("37.50")

    def test_within_allowance(self, aggregator, report, service_request, make_entry):
        make_entry("0.5", service_request=service_request, entry_date=date(2024, 12, 3))
        progress = aggregator.free_hours_progress(MonthlyReportSource(report))
        assert progress.percent == 25
        assert progress.remaining == Decimal("1.50")
        assert progress.overage_amount == Decimal("0.00")


class TestFreeHoursFallback:

    def test_report_limit_first(self, organization):
        organization.free_hours = Decimal("5.00")
        organization.save()
        report = MonthlyReport.objects.create(
            organization=organization, report_month=date(2024, 12, 1), free_hours_limit=Decimal("1.00")
        )
        assert MonthlyReportSource(report).free_hours() == Decimal("1.00")

    def test_organization_allowance(self, organization):
        organization.free_hours = Decimal("5.00")
        organization.save()
        report = MonthlyReport.objects.create(organization=organization, report_month=date(2024, 12, 1))
        assert MonthlyReportSource(report).free_hours() == Decimal("5.00")

    def test_configured_default(self, organization):
        report = MonthlyReport.objects.create(organization=organization, report_month=date(2024, 12, 1))
        assert MonthlyReportSource(report).free_hours() == Decimal("2.0")
