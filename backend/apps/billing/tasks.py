"""Celery tasks for scheduled billing work. Scheduling is left to an external beat/cron."""

import logging

from celery import shared_task

from apps.billing.dashboard import refresh_alert_counts as refresh_cached_alert_counts
from apps.billing.exceptions import BillingError, StoreUnavailable
from apps.billing.late_fees import LateFeeApplier
from apps.billing.ledger import PaymentLedger
from apps.billing.models import Invoice
from apps.billing.pdf import attach_invoice_pdf
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


@shared_task(
    autoretry_for=(StoreUnavailable,),
    retry_backoff=10,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def apply_late_fees(organization_id: int | None = None) -> int:
    """
    Apply the configured late fee to every overdue invoice that has none.

    Returns:
        Number of invoices a fee was applied to
    """
    applier = LateFeeApplier(BillingContext(organization_id=organization_id))
    applied = 0
    for invoice_id in applier.eligible_invoice_ids():
        try:
            applier.add_late_fee(invoice_id)
        except StoreUnavailable:
            raise
        except BillingError as e:
            logger.warning("Skipping late fee for invoice %s: %s", invoice_id, e.code)
            continue
        applied += 1

    logger.info("Applied late fees to %d invoices", applied)
    return applied


@shared_task(
    autoretry_for=(StoreUnavailable,),
    retry_backoff=10,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def refresh_invoice_statuses() -> int:
    """Move past-due invoices to overdue. Returns the number of status changes."""
    changed = PaymentLedger(BillingContext()).refresh_open_statuses()
    logger.info("Refreshed invoice statuses, %d changed", changed)
    return changed


@shared_task(
    autoretry_for=(StoreUnavailable,),
    retry_backoff=10,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def refresh_alert_counts(organization_id: int | None = None) -> int:
    """Recompute the cached dashboard alert counts. Returns the total alert count."""
    counts = refresh_cached_alert_counts(BillingContext(organization_id=organization_id))
    return counts.total


@shared_task(
    autoretry_for=(StoreUnavailable,),
    retry_backoff=10,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def render_invoice_pdf(invoice_id: int) -> bool:
    """
    Render and store the PDF of a finalized invoice.

    Returns:
        True if the PDF was stored, False otherwise
    """
    try:
        invoice = Invoice.objects.select_related("organization").get(id=invoice_id)
    except Invoice.DoesNotExist:
        logger.error("Invoice %s not found for PDF rendering", invoice_id)
        return False

    if not invoice.is_finalized:
        logger.info("Invoice %s is still a draft, skipping PDF", invoice_id)
        return False

    try:
        attach_invoice_pdf(invoice)
    except StoreUnavailable:
        raise
    except BillingError as e:
        logger.error("PDF rendering failed for invoice %s: %s", invoice_id, e)
        return False
    return True
