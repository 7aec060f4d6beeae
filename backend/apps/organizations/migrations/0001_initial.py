from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                (
                    "shortcode",
                    models.CharField(
                        help_text="Short identifier used on documents", max_length=20, unique=True
                    ),
                ),
                (
                    "free_hours",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Monthly free-hours allowance; falls back to the billing default",
                        max_digits=6,
                        null=True,
                    ),
                ),
                (
                    "hourly_rate",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Default hourly rate for this organization",
                        max_digits=10,
                        null=True,
                    ),
                ),
                (
                    "payment_terms_days",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Days until an invoice is due; falls back to the billing default",
                        null=True,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
    ]
