"""Invoice event notifications delivered through a Django signal."""
from django.db import transaction
from django.dispatch import Signal

INVOICE_PAID = "invoice_paid"
LATE_FEE_APPLIED = "late_fee_applied"

# Sent with invoice_id and kind after the triggering transaction commits.
# Receiver failures are logged by send_robust on the django.dispatch logger.
invoice_event = Signal()


def notify_on_commit(invoice_id: int, kind: str):
    """Schedule an invoice event for after the current transaction commits."""
    transaction.on_commit(
        lambda: invoice_event.send_robust(sender=None, invoice_id=invoice_id, kind=kind)
    )
