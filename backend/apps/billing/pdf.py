"""Invoice PDF rendering with WeasyPrint."""
import logging

from django.core.files.base import ContentFile
from django.template.loader import render_to_string

from apps.billing.conf import billing_setting
from apps.billing.exceptions import RenderFailed, store_errors
from apps.billing.models import Invoice

logger = logging.getLogger(__name__)


class InvoicePdfRenderer:
    """Renders an invoice snapshot to PDF bytes."""

    template_name = "billing/invoice.html"

    def render_html(self, snapshot: dict) -> str:
        return render_to_string(
            self.template_name,
            {
                "invoice": snapshot,
                "currency_symbol": billing_setting("CURRENCY_SYMBOL"),
            },
        )

    def render(self, snapshot: dict) -> bytes:
        try:
            return self.write_pdf(self.render_html(snapshot))
        except Exception as e:
            logger.error("Rendering invoice %s failed: %s", snapshot.get("id"), e)
            raise RenderFailed(str(e), invoice_id=snapshot.get("id")) from e

    @staticmethod
    def write_pdf(html: str) -> bytes:
        from weasyprint import HTML

        return HTML(string=html).write_pdf()


def attach_invoice_pdf(invoice: Invoice, renderer: InvoicePdfRenderer | None = None) -> str:
    """Render the invoice, store the PDF on the default storage and return its URL."""
    renderer = renderer or InvoicePdfRenderer()
    pdf_bytes = renderer.render(invoice.to_snapshot())
    filename = f"invoice-{invoice.number or invoice.pk}.pdf"
    try:
        invoice.pdf.save(filename, ContentFile(pdf_bytes), save=False)
    except OSError as e:
        raise RenderFailed(f"Storing PDF failed: {e}", invoice_id=invoice.pk) from e
    with store_errors():
        invoice.save(update_fields=["pdf", "updated_at"])
    logger.info("Stored PDF for invoice %s at %s", invoice.pk, invoice.pdf.name)
    return invoice.pdf.url
