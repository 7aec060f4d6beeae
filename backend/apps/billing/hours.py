"""Hour totals over time entries."""
import logging
from decimal import ROUND_CEILING, Decimal
from typing import Iterable

from apps.billing.conf import billing_decimal
from apps.billing.sources import BillingSource, MonthlyReportSource, source_for
from apps.billing.types import FreeHoursProgress, HoursTotals
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


def round_up_hours(hours: Decimal, increment: Decimal | None = None) -> Decimal:
    """Round hours up to the next billing increment (a quarter hour by default)."""
    if increment is None:
        increment = billing_decimal("HOURS_ROUNDING_INCREMENT")
    if hours <= 0:
        return Decimal("0.00")
    steps = (hours / increment).to_integral_value(rounding=ROUND_CEILING)
    return (steps * increment).quantize(Decimal("0.01"))


class HoursAggregator:
    """Sums billable and non-billable hours. Read-only."""

    def __init__(self, context: BillingContext):
        self.context = context

    def totals(self, source: BillingSource) -> HoursTotals:
        """Totals for every time entry of a billing source."""
        return self.totals_for_entries(source.time_entries())

    def totals_for(self, kind: str, source_id: int) -> HoursTotals:
        """Totals for the source of the given kind and id. Raises NotFound for unknown sources."""
        return self.totals(source_for(kind, source_id))

    def totals_for_entries(self, entries: Iterable) -> HoursTotals:
        """Totals for an already resolved set of entries. Sums are exact."""
        billable = Decimal("0")
        non_billable = Decimal("0")
        count = 0
        for entry in entries:
            count += 1
            if not entry.is_billable:
                non_billable += entry.hours
            else:
                billable += entry.hours
        logger.debug("Aggregated %d time entries", count)
        return HoursTotals(
            billable_hours=billable,
            non_billable_hours=non_billable,
            entry_count=count,
        )

    def free_hours_progress(self, source: MonthlyReportSource) -> FreeHoursProgress:
        """Free-hours usage for a monthly report, each entry rounded up to the increment."""
        used = sum(
            (round_up_hours(entry.hours) for entry in source.time_entries() if entry.is_billable),
            Decimal("0.00"),
        )
        limit = source.free_hours()
        percent_raw = (used / limit * 100).quantize(Decimal("0.1")) if limit > 0 else Decimal("0.0")
        overage = max(used - limit, Decimal("0.00"))
        rate = source.organization().hourly_rate or billing_decimal("DEFAULT_HOURLY_RATE")
        return FreeHoursProgress(
            used=used,
            limit=limit,
            percent=min(int(percent_raw.to_integral_value()), 100),
            percent_raw=percent_raw,
            remaining=max(limit - used, Decimal("0.00")),
            overage_hours=overage,
            overage_amount=(overage * rate).quantize(Decimal("0.01")),
        )
