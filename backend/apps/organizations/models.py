from django.db import models

from apps.core.models import TimestampedModel


class Organization(TimestampedModel):
    """A client organization served by the portal."""

    name = models.CharField(max_length=255)
    shortcode = models.CharField(
        max_length=20,
        unique=True,
        help_text="Short identifier used on documents",
    )
    free_hours = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Monthly free-hours allowance; falls back to the billing default",
    )
    hourly_rate = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Default hourly rate for this organization",
    )
    payment_terms_days = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Days until an invoice is due; falls back to the billing default",
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name
