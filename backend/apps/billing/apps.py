from django.apps import AppConfig


class BillingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.billing"

    def ready(self):
        from auditlog.registry import auditlog

        from apps.billing import signals  # noqa: F401
        from apps.billing.models import Invoice, LineItem, Payment

        auditlog.register(Invoice, exclude_fields=["updated_at"])
        auditlog.register(LineItem, exclude_fields=["updated_at"])
        auditlog.register(Payment)
