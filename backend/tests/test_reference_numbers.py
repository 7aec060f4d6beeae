"""Tests for the reference number generator."""
import pytest
from datetime import date, datetime

from apps.billing.exceptions import (
    InvalidDate,
    MalformedReference,
    SequenceExhausted,
    UnknownEntityType,
)
from apps.billing.models import IssuedReference, MonthlyReport
from apps.billing.numbering import ParsedReference, ReferenceNumberGenerator
from apps.projects.models import ServiceRequest


@pytest.fixture
def generator(billing_context):
    return ReferenceNumberGenerator(billing_context)


class TestReferenceParsing:
    """Test parsing and month labels."""

    def test_parse(self):
        assert ReferenceNumberGenerator.parse("BBB-2412-007") == ParsedReference(
            prefix="BBB", yymm="2412", sequence=7
        )

    @pytest.mark.parametrize(
        "number",
        ["BBB-2412-07", "bbb-2412-007", "BBB-24120-007", "BBB-2412-007 ", "BBB2412007", ""],
    )
    def test_parse_rejects_malformed(self, number):
        with pytest.raises(MalformedReference):
            ReferenceNumberGenerator.parse(number)

    def test_month_label(self):
        assert ReferenceNumberGenerator.month_label("RR-2412-003") == "December 2024"
        assert ReferenceNumberGenerator.month_label("SR-2501-010") == "January 2025"

    def test_month_label_rejects_invalid_month(self):
        with pytest.raises(MalformedReference):
            ReferenceNumberGenerator.month_label("RR-2413-001")


class TestReferenceSequential:
    """Test sequential generation per prefix and month."""

    def test_first_number_of_month(self, db, generator):
        assert generator.generate("invoice", date(2024, 12, 3)) == "BBB-2412-001"

    def test_consecutive_numbers_differ_in_last_segment(self, db, generator):
        first = generator.generate("invoice", date(2024, 12, 3))
        second = generator.generate("invoice", date(2024, 12, 28))
        assert first.rsplit("-", 1)[0] == second.rsplit("-", 1)[0]
        assert generator.parse(second).sequence == generator.parse(first).sequence + 1

    def test_sequence_restarts_each_month(self, db, generator):
        generator.generate("invoice", date(2024, 12, 3))
        generator.generate("invoice", date(2024, 12, 4))
        assert generator.generate("invoice", date(2025, 1, 2)) == "BBB-2501-001"

    def test_prefixes_are_independent(self, db, generator):
        generator.generate("invoice", date(2024, 12, 3))
        assert generator.generate("monthly_report", date(2024, 12, 1)) == "RR-2412-001"

    def test_parse_round_trips_prefix_and_period(self, db, generator):
        parsed = generator.parse(generator.generate("service_request", date(2024, 7, 19)))
        assert parsed.prefix == "SR"
        assert parsed.yymm == "2407"

    def test_accepts_datetime_and_string(self, db, generator):
        assert generator.generate("invoice", datetime(2024, 3, 9, 15, 30)) == "BBB-2403-001"
        assert generator.generate("invoice", "2024-03-20") == "BBB-2403-002"
        assert generator.generate("invoice", "March 25, 2024") == "BBB-2403-003"

    def test_defaults_to_context_today(self, db, generator):
        assert generator.generate("invoice") == "BBB-2412-001"

    def test_registry_row_is_recorded(self, db, generator):
        number = generator.generate("invoice", date(2024, 12, 3))
        ref = IssuedReference.objects.get(number=number)
        assert (ref.entity_type, ref.prefix, ref.period, ref.sequence) == ("invoice", "BBB", "2412", 1)

    def test_invalid_date(self, db, generator):
        with pytest.raises(InvalidDate):
            generator.generate("invoice", "not a date")

    def test_unknown_entity_type(self, db, generator):
        with pytest.raises(UnknownEntityType):
            generator.generate("purchase_order", date(2024, 12, 3))

    def test_sequence_exhausted(self, db, generator):
        IssuedReference.objects.create(
            entity_type="invoice", prefix="BBB", period="2412", sequence=999, number="BBB-2412-999"
        )
        with pytest.raises(SequenceExhausted):
            generator.generate("invoice", date(2024, 12, 3))

    def test_preview_does_not_reserve(self, db, generator):
        preview = generator.preview("invoice", date(2024, 12, 3))
        assert preview == generator.preview("invoice", date(2024, 12, 3))
        assert generator.generate("invoice", date(2024, 12, 3)) == preview

    def test_stale_maximum_never_duplicates(self, db, generator, monkeypatch):
        first = generator.generate("invoice", date(2024, 12, 3))

        real_highest = ReferenceNumberGenerator._highest_sequence
        calls = []

        def stale_then_real(self, prefix, period):
            calls.append(period)
            if len(calls) == 1:
                # Read taken before the first insert became visible
                return None
            return real_highest(self, prefix, period)

        monkeypatch.setattr(ReferenceNumberGenerator, "_highest_sequence", stale_then_real)
        second = generator.generate("invoice", date(2024, 12, 20))

        assert second != first
        assert second == "BBB-2412-002"
        assert len(calls) == 2
        assert IssuedReference.objects.filter(prefix="BBB", period="2412").count() == 2


class TestAssignedOnSave:
    """Records get their reference on first save."""

    def test_monthly_report_number_uses_report_month(self, organization):
        report = MonthlyReport.objects.create(organization=organization, report_month=date(2024, 11, 14))
        assert report.report_month == date(2024, 11, 1)
        assert report.report_number == "RR-2411-001"

    def test_number_kept_on_update(self, organization):
        report = MonthlyReport.objects.create(organization=organization, report_month=date(2024, 11, 1))
        number = report.report_number
        report.free_hours_limit = 4
        report.save()
        report.refresh_from_db()
        assert report.report_number == number

    def test_service_request_number(self, organization):
        request = ServiceRequest.objects.create(organization=organization, subject="Email bounce")
        parsed = ReferenceNumberGenerator.parse(request.reference_number)
        assert parsed.prefix == "SR"
        assert parsed.sequence == 1
