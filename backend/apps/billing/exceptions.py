"""Billing error kinds."""
from contextlib import contextmanager

from django.db import InterfaceError, OperationalError


class BillingError(Exception):
    """Base class for billing failures. ``code`` is stable across releases."""

    code = "BillingError"
    default_message = "Billing operation failed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        for key, value in details.items():
            setattr(self, key, value)
        super().__init__(self.message)


class InvalidDate(BillingError):
    code = "InvalidDate"
    default_message = "Date could not be parsed"


class MalformedReference(BillingError):
    code = "MalformedReference"
    default_message = "Reference number is malformed"


class UnknownEntityType(BillingError):
    code = "UnknownEntityType"
    default_message = "No reference prefix is configured for this entity type"


class SequenceExhausted(BillingError):
    code = "SequenceExhausted"
    default_message = "Monthly reference sequence is exhausted"


class AlreadyInvoiced(BillingError):
    code = "AlreadyInvoiced"
    default_message = "Source already has an open invoice"


class NoBillableHours(BillingError):
    code = "NoBillableHours"
    default_message = "Source has no billable hours"


class AlreadyApplied(BillingError):
    code = "AlreadyApplied"
    default_message = "Late fee already applied"


class NotOverdue(BillingError):
    code = "NotOverdue"
    default_message = "Invoice is not overdue"


class InvoiceCancelled(BillingError):
    code = "InvoiceCancelled"
    default_message = "Invoice is cancelled"


class InvalidTransition(BillingError):
    code = "InvalidTransition"
    default_message = "Invoice cannot move to the requested state"


class InvalidAmount(BillingError):
    code = "InvalidAmount"
    default_message = "Amount is invalid"


class InvalidPaymentMethod(BillingError):
    code = "InvalidPaymentMethod"
    default_message = "Unknown payment method"


class StoreUnavailable(BillingError):
    code = "StoreUnavailable"
    default_message = "Record store is unavailable"


class NotFound(BillingError):
    code = "NotFound"
    default_message = "Record not found"


class RenderFailed(BillingError):
    code = "RenderFailed"
    default_message = "Invoice PDF could not be rendered"


@contextmanager
def store_errors():
    """Translate database connectivity failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(str(e)) from e
