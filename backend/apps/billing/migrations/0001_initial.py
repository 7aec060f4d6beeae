import django.db.models.deletion
from decimal import Decimal

from django.conf import settings
from django.db import migrations, models

import apps.billing.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("organizations", "0001_initial"),
        ("projects", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="IssuedReference",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entity_type", models.CharField(max_length=50)),
                ("prefix", models.CharField(max_length=10)),
                ("period", models.CharField(help_text="YYMM", max_length=4)),
                ("sequence", models.PositiveIntegerField()),
                ("number", models.CharField(max_length=20, unique=True)),
                ("issued_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["prefix", "period", "sequence"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("prefix", "period", "sequence"), name="unique_reference_sequence"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="MonthlyReport",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("report_month", models.DateField(help_text="First day of the reported month")),
                (
                    "free_hours_limit",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Overrides the organization's free-hours allowance for this month",
                        max_digits=6,
                        null=True,
                    ),
                ),
                (
                    "report_number",
                    models.CharField(blank=True, help_text="RR-YYMM-NNN, assigned on first save", max_length=20),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="monthly_reports",
                        to="organizations.organization",
                    ),
                ),
            ],
            options={
                "ordering": ["-report_month"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("organization", "report_month"),
                        name="unique_monthly_report_per_organization",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "number",
                    models.CharField(
                        blank=True,
                        help_text="Assigned sequential invoice number; blank until finalized",
                        max_length=20,
                    ),
                ),
                (
                    "invoice_type",
                    models.CharField(
                        choices=[("milestone", "Milestone"), ("monthly", "Monthly"), ("closeout", "Closeout")],
                        max_length=20,
                    ),
                ),
                (
                    "source_key",
                    models.CharField(help_text="Identifies the billing source, e.g. 'milestone:12'", max_length=64),
                ),
                ("issue_date", models.DateField()),
                ("due_date", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("pending", "Pending"),
                            ("partial", "Partially Paid"),
                            ("paid", "Paid"),
                            ("overdue", "Overdue"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("total_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("finalized_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("pdf", models.FileField(blank=True, upload_to=apps.billing.models.invoice_pdf_upload_path)),
                (
                    "milestone",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="projects.milestone",
                    ),
                ),
                (
                    "monthly_report",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="billing.monthlyreport",
                    ),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="organizations.organization",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="projects.project",
                    ),
                ),
            ],
            options={
                "ordering": ["-issue_date", "-id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "cancelled"), _negated=True),
                        fields=("source_key",),
                        name="unique_open_invoice_per_source",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("number", ""), _negated=True),
                        fields=("number",),
                        name="unique_invoice_number",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "line_type",
                    models.CharField(
                        choices=[("hours", "Hours"), ("milestone", "Milestone"), ("late_fee", "Late Fee")],
                        max_length=20,
                    ),
                ),
                ("description", models.CharField(max_length=255)),
                ("quantity", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ("rate", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("display_order", models.PositiveIntegerField(default=0)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="billing.invoice",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="line_items",
                        to="projects.milestone",
                    ),
                ),
                (
                    "monthly_report",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="line_items",
                        to="billing.monthlyreport",
                    ),
                ),
                (
                    "service_request",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="line_items",
                        to="projects.servicerequest",
                    ),
                ),
                (
                    "time_entries",
                    models.ManyToManyField(blank=True, related_name="line_items", to="projects.timeentry"),
                ),
            ],
            options={
                "ordering": ["display_order", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("line_type", "late_fee")),
                        fields=("invoice",),
                        name="unique_late_fee_per_invoice",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("card", "Card"),
                            ("bank_transfer", "Bank Transfer"),
                            ("other_transfer", "Other Transfer"),
                        ],
                        max_length=20,
                    ),
                ),
                ("transaction_reference", models.CharField(blank=True, max_length=255)),
                (
                    "fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Processing fee; reported separately, never credited to the balance",
                        max_digits=10,
                    ),
                ),
                ("recorded_at", models.DateTimeField()),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.invoice",
                    ),
                ),
                (
                    "recorded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="recorded_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["recorded_at", "id"],
            },
        ),
    ]
