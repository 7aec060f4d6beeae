"""Reference number service for month-scoped sequential numbers like BBB-2412-007."""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime

from dateutil import parser as date_parser
from django.db import IntegrityError, transaction
from django.db.models import Max

from apps.billing.conf import billing_setting
from apps.billing.exceptions import (
    InvalidDate,
    MalformedReference,
    SequenceExhausted,
    StoreUnavailable,
    UnknownEntityType,
    store_errors,
)
from apps.billing.models import IssuedReference
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"^([A-Z]+)-(\d{4})-(\d{3})$")


@dataclass(frozen=True)
class ParsedReference:
    prefix: str
    yymm: str
    sequence: int


class ReferenceNumberGenerator:
    """
    Generates unique reference numbers of the form ``<PREFIX>-<YYMM>-<NNN>``.

    The sequence restarts every calendar month. Every issued number is
    recorded in the IssuedReference registry, whose unique constraints turn
    a concurrent duplicate into an IntegrityError; the insert is retried
    inside a savepoint with a freshly read maximum.
    """

    MAX_ATTEMPTS = 5
    MAX_SEQUENCE = 999

    def __init__(self, context: BillingContext):
        self.context = context

    def generate(self, entity_type: str, logical_date=None) -> str:
        """Reserve and return the next reference number for the entity type."""
        prefix = self._prefix_for(entity_type)
        period = self._period(self._resolve_date(logical_date))

        with store_errors():
            for attempt in range(1, self.MAX_ATTEMPTS + 1):
                sequence = self._next_sequence(prefix, period)
                number = self._format_number(prefix, period, sequence)
                try:
                    with transaction.atomic():
                        IssuedReference.objects.create(
                            entity_type=entity_type,
                            prefix=prefix,
                            period=period,
                            sequence=sequence,
                            number=number,
                        )
                except IntegrityError:
                    logger.warning(
                        "Reference %s was taken concurrently (attempt %d/%d)",
                        number, attempt, self.MAX_ATTEMPTS,
                    )
                    continue
                logger.info("Issued reference %s for %s", number, entity_type)
                return number

        raise StoreUnavailable(
            f"Could not reserve a {prefix} reference for {period} after {self.MAX_ATTEMPTS} attempts",
            prefix=prefix,
            period=period,
        )

    def preview(self, entity_type: str, logical_date=None) -> str:
        """Preview what the next number would look like without reserving it."""
        prefix = self._prefix_for(entity_type)
        period = self._period(self._resolve_date(logical_date))
        with store_errors():
            sequence = self._next_sequence(prefix, period)
        return self._format_number(prefix, period, sequence)

    @staticmethod
    def parse(number: str) -> ParsedReference:
        """Split a reference number into prefix, YYMM period and sequence."""
        match = REFERENCE_PATTERN.match(number or "")
        if match is None:
            raise MalformedReference(f"Malformed reference number: {number!r}", number=number)
        prefix, yymm, sequence = match.groups()
        return ParsedReference(prefix=prefix, yymm=yymm, sequence=int(sequence))

    @classmethod
    def month_label(cls, number: str) -> str:
        """Return the month a reference belongs to, e.g. 'December 2024'."""
        parsed = cls.parse(number)
        year = 2000 + int(parsed.yymm[:2])
        month = int(parsed.yymm[2:])
        if not 1 <= month <= 12:
            raise MalformedReference(f"Reference {number!r} has no valid month", number=number)
        return date(year, month, 1).strftime("%B %Y")

    def _next_sequence(self, prefix: str, period: str) -> int:
        sequence = (self._highest_sequence(prefix, period) or 0) + 1
        if sequence > self.MAX_SEQUENCE:
            raise SequenceExhausted(
                f"{prefix} references for {period} are exhausted",
                prefix=prefix,
                period=period,
            )
        return sequence

    def _highest_sequence(self, prefix: str, period: str) -> int | None:
        return (
            IssuedReference.objects
            .filter(prefix=prefix, period=period)
            .aggregate(highest=Max("sequence"))["highest"]
        )

    @staticmethod
    def _prefix_for(entity_type: str) -> str:
        prefixes = billing_setting("REFERENCE_PREFIXES")
        try:
            return prefixes[entity_type]
        except KeyError:
            raise UnknownEntityType(
                f"No reference prefix configured for {entity_type!r}",
                entity_type=entity_type,
            ) from None

    def _resolve_date(self, logical_date) -> date:
        if logical_date is None:
            return self.context.today
        if isinstance(logical_date, datetime):
            return logical_date.date()
        if isinstance(logical_date, date):
            return logical_date
        if isinstance(logical_date, str):
            try:
                return date_parser.parse(logical_date).date()
            except (ValueError, OverflowError) as e:
                raise InvalidDate(f"Invalid date: {logical_date!r}", value=logical_date) from e
        raise InvalidDate(f"Invalid date: {logical_date!r}", value=logical_date)

    @staticmethod
    def _period(value: date) -> str:
        return f"{value.year % 100:02d}{value.month:02d}"

    @staticmethod
    def _format_number(prefix: str, period: str, sequence: int) -> str:
        return f"{prefix}-{period}-{sequence:03d}"
