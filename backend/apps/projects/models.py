"""Project work records: projects, milestones, service requests, client tasks and time entries."""
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from apps.core.models import TimestampedModel


class Project(TimestampedModel):
    """A fixed-scope engagement for an organization, billed per milestone."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        related_name="projects",
    )
    name = models.CharField(max_length=255)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    free_hours = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Free hours granted for the closeout invoice",
    )
    closed_on = models.DateField(
        null=True,
        blank=True,
        help_text="Date the project was closed out",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.name


class Milestone(TimestampedModel):
    """A billable stage of a project."""

    class PaymentStatus(models.TextChoices):
        # Derived from the milestone invoices, not stored
        PENDING = "pending", "Pending"
        INVOICED = "invoiced", "Invoiced"
        PAID = "paid", "Paid"

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="milestones",
    )
    name = models.CharField(max_length=255)
    order = models.PositiveIntegerField(default=0)
    billing_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date used to number the milestone invoice",
    )
    free_hours = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        null=True,
        blank=True,
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Fixed price; when set the milestone is billed as a single line",
    )

    class Meta:
        ordering = ["project", "order"]

    def __str__(self):
        return f"{self.project.name}: {self.name}"


class ServiceRequest(TimestampedModel):
    """A support request raised by an organization."""

    class Status(models.TextChoices):
        NEW = "new", "New"
        ACKNOWLEDGED = "acknowledged", "Acknowledged"
        IN_PROGRESS = "in_progress", "In Progress"
        WAITING_ON_CLIENT = "waiting_on_client", "Waiting on Client"
        ON_HOLD = "on_hold", "On Hold"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    IN_PROGRESS_STATUSES = (
        Status.ACKNOWLEDGED,
        Status.IN_PROGRESS,
        Status.WAITING_ON_CLIENT,
        Status.ON_HOLD,
    )

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        related_name="service_requests",
    )
    project = models.ForeignKey(
        Project,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="service_requests",
    )
    subject = models.CharField(max_length=255)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.NEW,
    )
    reference_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="SR-YYMM-NNN, assigned on first save",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.reference_number} {self.subject}".strip()


class ClientTask(TimestampedModel):
    """An action item the organization owes the service team."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        related_name="client_tasks",
    )
    description = models.TextField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    due_date = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["due_date", "-created_at"]

    def __str__(self):
        return self.description[:50]


class TimeEntry(TimestampedModel):
    """Hours of work recorded against a milestone or a service request."""

    entry_date = models.DateField()
    hours = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(0)],
    )
    billable = models.BooleanField(
        null=True,
        blank=True,
        help_text="Only an explicit False marks the entry as non-billable",
    )
    description = models.TextField(blank=True)
    work_type = models.CharField(max_length=50, blank=True, default="general")
    hourly_rate = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Overrides the organization rate for this entry",
    )

    # Work source - exactly one must be set
    milestone = models.ForeignKey(
        Milestone,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="time_entries",
    )
    service_request = models.ForeignKey(
        ServiceRequest,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="time_entries",
    )

    class Meta:
        ordering = ["entry_date", "id"]
        verbose_name_plural = "time entries"

    def __str__(self):
        return f"{self.hours}h on {self.entry_date}"

    def clean(self):
        """Validate that exactly one work source is set."""
        super().clean()
        source_count = sum([
            self.milestone_id is not None,
            self.service_request_id is not None,
        ])
        if source_count != 1:
            raise ValidationError(
                "A time entry must be linked to exactly one milestone or service request."
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def is_billable(self) -> bool:
        """Entries with no explicit flag are billable."""
        return self.billable is not False
