"""Payment ledger: records payments and keeps invoice status in sync."""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from apps.billing.exceptions import (
    InvalidAmount,
    InvalidPaymentMethod,
    InvoiceCancelled,
    NotFound,
    store_errors,
)
from apps.billing.models import Invoice, Payment
from apps.billing.notifications import INVOICE_PAID, notify_on_commit
from apps.billing.status import status_for
from apps.billing.types import LedgerSummary
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


CENT = Decimal("0.01")


def _to_decimal(value, field: str) -> Decimal:
    """Parse a money value for a Payment field, raising InvalidAmount for anything unstorable."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"{field} is not a number: {value!r}", field=field) from None
    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be a finite number: {value!r}", field=field)

    max_digits = Payment._meta.get_field(field).max_digits
    if abs(amount) >= Decimal(10) ** (max_digits - 2):
        raise InvalidAmount(f"{field} is too large: {value!r}", field=field)
    if amount != amount.quantize(CENT):
        raise InvalidAmount(f"{field} has more than two decimal places: {value!r}", field=field)
    return amount.quantize(CENT)


class PaymentLedger:
    """
    Records payments against invoices.

    Each payment is appended while the invoice row is locked, then the
    paid amount and status are recomputed from the full payment set. Fees
    are kept on the payment and never reduce the balance.
    """

    def __init__(self, context: BillingContext):
        self.context = context

    def record_payment(
        self,
        invoice_id: int,
        amount,
        method: str,
        transaction_reference: str = "",
        fee=0,
    ) -> Payment:
        amount = _to_decimal(amount, "amount")
        fee = _to_decimal(fee, "fee")
        if amount <= 0:
            raise InvalidAmount("Payment amount must be positive", field="amount")
        if fee < 0:
            raise InvalidAmount("Payment fee cannot be negative", field="fee")
        if method not in Payment.Method.values:
            raise InvalidPaymentMethod(f"Unknown payment method: {method!r}", method=method)

        with store_errors(), transaction.atomic():
            invoice = self._locked(invoice_id)
            if invoice.status == Invoice.Status.CANCELLED:
                raise InvoiceCancelled(f"Invoice {invoice_id} is cancelled", invoice_id=invoice_id)

            previous_status = invoice.status
            payment = Payment.objects.create(
                invoice=invoice,
                amount=amount,
                method=method,
                transaction_reference=transaction_reference or "",
                fee=fee,
                recorded_at=timezone.now(),
                recorded_by=self._actor(),
            )
            self._apply_payments(invoice)

            if invoice.status == Invoice.Status.PAID and previous_status != Invoice.Status.PAID:
                notify_on_commit(invoice.pk, INVOICE_PAID)

        logger.info(
            "Recorded %s payment of %s on invoice %s (status %s -> %s)",
            method, amount, invoice.pk, previous_status, invoice.status,
        )
        return payment

    def summary(self, invoice_id: int) -> LedgerSummary:
        with store_errors():
            try:
                invoice = Invoice.objects.get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise NotFound(f"Invoice {invoice_id} not found", invoice_id=invoice_id) from None
            totals = invoice.payments.aggregate(
                paid=Sum("amount"), fees=Sum("fee"), count=Count("id")
            )
        paid = totals["paid"] or Decimal("0.00")
        return LedgerSummary(
            total=invoice.total_amount,
            paid=paid,
            fees=totals["fees"] or Decimal("0.00"),
            balance=max(invoice.total_amount - paid, Decimal("0.00")),
            payment_count=totals["count"],
        )

    def refresh_status(self, invoice_id: int) -> Invoice:
        """Recompute paid amount and status from the full payment set."""
        with store_errors(), transaction.atomic():
            invoice = self._locked(invoice_id)
            if invoice.status != Invoice.Status.CANCELLED:
                previous_status = invoice.status
                self._apply_payments(invoice)
                if previous_status != invoice.status:
                    logger.info(
                        "Invoice %s status %s -> %s", invoice.pk, previous_status, invoice.status
                    )
        return invoice

    def refresh_open_statuses(self) -> int:
        """Refresh every finalized, unsettled invoice. Returns how many changed status."""
        invoice_ids = list(
            Invoice.objects
            .filter(status__in=Invoice.OPEN_STATUSES)
            .values_list("id", flat=True)
        )
        changed = 0
        for invoice_id in invoice_ids:
            before = Invoice.objects.values_list("status", flat=True).get(pk=invoice_id)
            if self.refresh_status(invoice_id).status != before:
                changed += 1
        return changed

    def _apply_payments(self, invoice: Invoice):
        paid = invoice.payments.aggregate(total=Sum("amount"))["total"] or Decimal("0.00")
        invoice.amount_paid = paid
        invoice.status = status_for(invoice, self.context.today)
        if invoice.status == Invoice.Status.PAID:
            if invoice.paid_at is None:
                invoice.paid_at = timezone.now()
        else:
            invoice.paid_at = None
        invoice.save(update_fields=["amount_paid", "status", "paid_at", "updated_at"])

    def _locked(self, invoice_id: int) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id)
        except Invoice.DoesNotExist:
            raise NotFound(f"Invoice {invoice_id} not found", invoice_id=invoice_id) from None

    def _actor(self):
        actor = self.context.actor
        if actor is None or not getattr(actor, "is_authenticated", False):
            return None
        return actor
