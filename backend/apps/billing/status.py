"""Invoice status derivation."""
from datetime import date
from decimal import Decimal

from apps.billing.models import Invoice

Status = Invoice.Status


def derive_status(
    *,
    total: Decimal,
    paid: Decimal,
    due_date: date,
    today: date,
    finalized: bool,
    cancelled: bool = False,
) -> str:
    """
    Compute an invoice status from its amounts and dates.

    Cancelled is terminal and unfinalized invoices are drafts. Otherwise
    a fully paid invoice is paid, an unpaid balance past its due date is
    overdue (even when partially paid), any payment makes it partial and
    anything else is pending.
    """
    if cancelled:
        return Status.CANCELLED
    if not finalized:
        return Status.DRAFT
    if paid >= total:
        return Status.PAID
    if due_date < today:
        return Status.OVERDUE
    if paid > 0:
        return Status.PARTIAL
    return Status.PENDING


def status_for(invoice: Invoice, today: date) -> str:
    """Derived status of a stored invoice."""
    return derive_status(
        total=invoice.total_amount,
        paid=invoice.amount_paid,
        due_date=invoice.due_date,
        today=today,
        finalized=invoice.is_finalized,
        cancelled=invoice.status == Status.CANCELLED,
    )
