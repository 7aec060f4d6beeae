"""Billing configuration read from the ``BILLING`` settings dict."""
from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "CURRENCY_SYMBOL": "$",
    "PAYMENT_TERMS_DAYS": 15,
    "DEFAULT_HOURLY_RATE": "30.00",
    "DEFAULT_FREE_HOURS": "2.0",
    "HOURS_ROUNDING_INCREMENT": "0.25",
    "ALLOW_ZERO_AMOUNT_INVOICES": False,
    "LATE_FEE_TYPE": "fixed",
    "LATE_FEE_AMOUNT": "25.00",
    "LATE_FEE_PERCENT": "5.00",
    "LATE_FEE_GRACE_DAYS": 0,
    "INVOICE_DUE_SOON_DAYS": 2,
    "TASK_DUE_SOON_DAYS": 3,
    "ALERT_CACHE_TTL": 300,
    "RENDER_PDF_ON_FINALIZE": True,
    "REFERENCE_PREFIXES": {
        "invoice": "BBB",
        "monthly_report": "RR",
        "service_request": "SR",
    },
}


def billing_setting(name: str):
    """Return a billing setting, falling back to the documented default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown billing setting: {name}")
    return getattr(settings, "BILLING", {}).get(name, DEFAULTS[name])


def billing_decimal(name: str) -> Decimal:
    """Return a numeric billing setting as a Decimal."""
    return Decimal(str(billing_setting(name)))


def format_currency(amount: Decimal) -> str:
    """Format an amount with the configured currency symbol, e.g. '$1,234.50'."""
    symbol = billing_setting("CURRENCY_SYMBOL")
    if amount < 0:
        return f"-{symbol}{-amount:,.2f}"
    return f"{symbol}{amount:,.2f}"
