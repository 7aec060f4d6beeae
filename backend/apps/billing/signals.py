"""Model signal handlers for billing records."""
import logging

from django.db.models.signals import pre_save
from django.dispatch import receiver

from apps.billing.models import MonthlyReport
from apps.billing.numbering import ReferenceNumberGenerator
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=MonthlyReport)
def assign_report_number(sender, instance, raw=False, **kwargs):
    """Assign an RR-YYMM-NNN number from the report month on first save."""
    if raw or instance.report_number:
        return

    instance.report_number = ReferenceNumberGenerator(BillingContext()).generate(
        "monthly_report", instance.report_month
    )
    logger.debug("Assigned %s to monthly report", instance.report_number)
