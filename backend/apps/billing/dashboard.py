"""Cached alert counts for dashboard badges."""
import logging

from django.core.cache import cache

from apps.billing.alerts import BillingAlertsAggregator
from apps.billing.conf import billing_setting
from apps.billing.types import AlertCounts
from apps.core.context import BillingContext

logger = logging.getLogger(__name__)


def _cache_key(context: BillingContext) -> str:
    scope = context.organization_id if context.organization_id is not None else "all"
    return f"billing:alert-counts:{scope}:{context.today.isoformat()}"


def cached_alert_counts(context: BillingContext) -> AlertCounts:
    """Alert counts, served from the cache for ALERT_CACHE_TTL seconds."""
    return cache.get_or_set(
        _cache_key(context),
        lambda: BillingAlertsAggregator(context).counts(),
        timeout=billing_setting("ALERT_CACHE_TTL"),
    )


def refresh_alert_counts(context: BillingContext) -> AlertCounts:
    """Recompute alert counts and overwrite the cached value."""
    counts = BillingAlertsAggregator(context).counts()
    cache.set(_cache_key(context), counts, timeout=billing_setting("ALERT_CACHE_TTL"))
    logger.debug("Refreshed alert counts for %s", _cache_key(context))
    return counts
