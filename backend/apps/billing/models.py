"""Billing models: monthly reports, invoices, line items, payments and the reference registry."""
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum

from apps.core.models import TimestampedModel


def invoice_pdf_upload_path(instance, filename):
    """Upload path: invoices/{organization_id}/{uuid}.pdf"""
    unique_filename = f"{uuid.uuid4().hex}.pdf"
    return f"invoices/{instance.organization_id}/{unique_filename}"


class MonthlyReport(TimestampedModel):
    """Monthly hours report for an organization's service requests."""

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        related_name="monthly_reports",
    )
    report_month = models.DateField(
        help_text="First day of the reported month",
    )
    free_hours_limit = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Overrides the organization's free-hours allowance for this month",
    )
    report_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="RR-YYMM-NNN, assigned on first save",
    )

    class Meta:
        ordering = ["-report_month"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "report_month"],
                name="unique_monthly_report_per_organization",
            ),
        ]

    def __str__(self):
        return self.report_number or f"Report {self.report_month:%Y-%m}"

    def save(self, *args, **kwargs):
        self.report_month = self.report_month.replace(day=1)
        super().save(*args, **kwargs)


class Invoice(TimestampedModel):
    """An invoice produced from a billing source."""

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING = "pending", "Pending"
        PARTIAL = "partial", "Partially Paid"
        PAID = "paid", "Paid"
        OVERDUE = "overdue", "Overdue"
        CANCELLED = "cancelled", "Cancelled"

    class InvoiceType(models.TextChoices):
        MILESTONE = "milestone", "Milestone"
        MONTHLY = "monthly", "Monthly"
        CLOSEOUT = "closeout", "Closeout"

    OPEN_STATUSES = (Status.PENDING, Status.PARTIAL, Status.OVERDUE)

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    number = models.CharField(
        max_length=20,
        blank=True,
        help_text="Assigned sequential invoice number; blank until finalized",
    )
    invoice_type = models.CharField(max_length=20, choices=InvoiceType.choices)
    source_key = models.CharField(
        max_length=64,
        help_text="Identifies the billing source, e.g. 'milestone:12'",
    )

    # Source links
    milestone = models.ForeignKey(
        "projects.Milestone",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoices",
    )
    monthly_report = models.ForeignKey(
        MonthlyReport,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoices",
    )
    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoices",
    )

    issue_date = models.DateField()
    due_date = models.DateField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    paid_at = models.DateTimeField(null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    pdf = models.FileField(upload_to=invoice_pdf_upload_path, blank=True)

    class Meta:
        ordering = ["-issue_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["source_key"],
                condition=~Q(status="cancelled"),
                name="unique_open_invoice_per_source",
            ),
            models.UniqueConstraint(
                fields=["number"],
                condition=~Q(number=""),
                name="unique_invoice_number",
            ),
        ]

    def __str__(self):
        return f"Invoice {self.number or f'draft #{self.pk}'} - {self.organization}"

    @property
    def balance(self) -> Decimal:
        return max(self.total_amount - self.amount_paid, Decimal("0.00"))

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    def line_items_total(self) -> Decimal:
        return self.line_items.aggregate(total=Sum("amount"))["total"] or Decimal("0.00")

    def to_snapshot(self) -> dict:
        """Capture current state as a JSON-serializable dict for rendering."""
        organization = self.organization
        return {
            "id": self.pk,
            "number": self.number,
            "invoice_type": self.invoice_type,
            "invoice_type_label": self.get_invoice_type_display(),
            "status": self.status,
            "status_label": self.get_status_display(),
            "issue_date": self.issue_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "organization": {
                "id": organization.pk,
                "name": organization.name,
                "shortcode": organization.shortcode,
            },
            "line_items": [
                {
                    "line_type": item.line_type,
                    "description": item.description,
                    "quantity": str(item.quantity) if item.quantity is not None else None,
                    "rate": str(item.rate) if item.rate is not None else None,
                    "amount": str(item.amount),
                }
                for item in self.line_items.all()
            ],
            "total_amount": str(self.total_amount),
            "amount_paid": str(self.amount_paid),
            "balance": str(self.balance),
        }


class LineItem(TimestampedModel):
    """A single billed line on an invoice."""

    class LineType(models.TextChoices):
        HOURS = "hours", "Hours"
        MILESTONE = "milestone", "Milestone"
        LATE_FEE = "late_fee", "Late Fee"

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    line_type = models.CharField(max_length=20, choices=LineType.choices)
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    display_order = models.PositiveIntegerField(default=0)

    # Source reference, empty for fees
    milestone = models.ForeignKey(
        "projects.Milestone",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="line_items",
    )
    service_request = models.ForeignKey(
        "projects.ServiceRequest",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="line_items",
    )
    monthly_report = models.ForeignKey(
        MonthlyReport,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="line_items",
    )
    time_entries = models.ManyToManyField(
        "projects.TimeEntry",
        blank=True,
        related_name="line_items",
    )

    class Meta:
        ordering = ["display_order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["invoice"],
                condition=Q(line_type="late_fee"),
                name="unique_late_fee_per_invoice",
            ),
        ]

    def __str__(self):
        return f"{self.description} ({self.amount})"


class Payment(TimestampedModel):
    """A captured payment against an invoice. Append-only."""

    class Method(models.TextChoices):
        CARD = "card", "Card"
        BANK_TRANSFER = "bank_transfer", "Bank Transfer"
        OTHER_TRANSFER = "other_transfer", "Other Transfer"

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=20, choices=Method.choices)
    transaction_reference = models.CharField(max_length=255, blank=True)
    fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Processing fee; reported separately, never credited to the balance",
    )
    recorded_at = models.DateTimeField()
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="recorded_payments",
    )

    class Meta:
        ordering = ["recorded_at", "id"]

    def __str__(self):
        return f"{self.amount} via {self.get_method_display()}"


class IssuedReference(models.Model):
    """Registry row for every reference number handed out."""

    entity_type = models.CharField(max_length=50)
    prefix = models.CharField(max_length=10)
    period = models.CharField(max_length=4, help_text="YYMM")
    sequence = models.PositiveIntegerField()
    number = models.CharField(max_length=20, unique=True)
    issued_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["prefix", "period", "sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=["prefix", "period", "sequence"],
                name="unique_reference_sequence",
            ),
        ]

    def __str__(self):
        return self.number
