"""Late fee application for overdue invoices."""
import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.db import IntegrityError, transaction
from django.db.models import Max

from apps.billing.conf import billing_decimal, billing_setting
from apps.billing.exceptions import (
    AlreadyApplied,
    InvoiceCancelled,
    NotFound,
    NotOverdue,
    store_errors,
)
from apps.billing.models import Invoice, LineItem
from apps.billing.notifications import LATE_FEE_APPLIED, notify_on_commit
from apps.billing.status import status_for
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


class LateFeeApplier:
    """Appends a single late-fee line to an overdue invoice."""

    def __init__(self, context: BillingContext):
        self.context = context

    def add_late_fee(self, invoice_id: int) -> LineItem:
        with store_errors(), transaction.atomic():
            try:
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise NotFound(f"Invoice {invoice_id} not found", invoice_id=invoice_id) from None

            if invoice.status == Invoice.Status.CANCELLED:
                raise InvoiceCancelled(f"Invoice {invoice_id} is cancelled", invoice_id=invoice_id)
            if status_for(invoice, self.context.today) != Invoice.Status.OVERDUE:
                raise NotOverdue(f"Invoice {invoice_id} is not overdue", invoice_id=invoice_id)
            if invoice.line_items.filter(line_type=LineItem.LineType.LATE_FEE).exists():
                raise AlreadyApplied(
                    f"Invoice {invoice_id} already has a late fee", invoice_id=invoice_id
                )

            amount = self.fee_for(invoice)
            next_order = invoice.line_items.aggregate(highest=Max("display_order"))["highest"]
            try:
                with transaction.atomic():
                    line = LineItem.objects.create(
                        invoice=invoice,
                        line_type=LineItem.LineType.LATE_FEE,
                        description="Late Fee",
                        amount=amount,
                        display_order=(next_order or 0) + 1,
                    )
            except IntegrityError:
                raise AlreadyApplied(
                    f"Invoice {invoice_id} already has a late fee", invoice_id=invoice_id
                ) from None

            invoice.total_amount = invoice.line_items_total()
            invoice.save(update_fields=["total_amount", "updated_at"])
            notify_on_commit(invoice.pk, LATE_FEE_APPLIED)

        logger.info("Applied late fee of %s to invoice %s", amount, invoice.pk)
        return line

    def fee_for(self, invoice: Invoice) -> Decimal:
        """Fee under the configured policy: a fixed amount or a percent of the balance."""
        if billing_setting("LATE_FEE_TYPE") == "percent":
            percent = billing_decimal("LATE_FEE_PERCENT")
            amount = invoice.balance * percent / Decimal("100")
        else:
            amount = billing_decimal("LATE_FEE_AMOUNT")
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def eligible_invoice_ids(self) -> list[int]:
        """Overdue invoices past the grace period that carry no late fee yet."""
        cutoff = self.context.today - timedelta(days=billing_setting("LATE_FEE_GRACE_DAYS"))
        queryset = (
            Invoice.objects
            .filter(status__in=Invoice.OPEN_STATUSES, due_date__lt=cutoff)
            .exclude(line_items__line_type=LineItem.LineType.LATE_FEE)
        )
        if self.context.organization_id is not None:
            queryset = queryset.filter(organization_id=self.context.organization_id)
        return list(queryset.values_list("id", flat=True).distinct())
