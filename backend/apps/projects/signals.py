"""Model signal handlers for project records."""
import logging

from django.db.models.signals import pre_save
from django.dispatch import receiver

from apps.projects.models import ServiceRequest

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=ServiceRequest)
def assign_service_request_number(sender, instance, raw=False, **kwargs):
    """Assign an SR-YYMM-NNN reference on first save."""
    if raw or instance.reference_number:
        return

    from apps.billing.numbering import ReferenceNumberGenerator
    from apps.core.context import BillingContext

    instance.reference_number = ReferenceNumberGenerator(BillingContext()).generate(
        "service_request"
    )
    logger.debug("Assigned %s to new service request", instance.reference_number)
