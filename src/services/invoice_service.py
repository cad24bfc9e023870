"""Invoice documents rendered to PDF with PyMuPDF and kept in Supabase Storage."""

import logging
from datetime import datetime
from html import escape
from io import BytesIO
from typing import Any

import fitz  # PyMuPDF
from supabase import Client

from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.models.order import Order

logger = logging.getLogger(__name__)

# Page margin in points
PAGE_MARGIN = 36


def _format_date(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return f"{value:%B} {value.day}, {value.year}"


def render_invoice_html(order: Order) -> str:
    """Render the invoice for an order as HTML.

    The issue date is the payment date, falling back to the order date.
    """
    customer = order.get("customer") or {}
    address = order.get("shipping_address") or {}
    currency = escape(str(order.get("currency", "")))
    issued_on = _format_date(order.get("paid_at") or order.get("created_at"))

    address_lines = [
        address.get("line1"),
        address.get("line2"),
        " ".join(part for part in (address.get("postal_code"), address.get("city")) if part),
        ", ".join(part for part in (address.get("region"), address.get("country")) if part),
    ]
    address_html = "<br>".join(escape(line) for line in address_lines if line)

    item_rows = "".join(
        f"""
        <tr>
            <td>{escape(item['product_snapshot']['name'])}</td>
            <td style="text-align: center;">{item['quantity']}</td>
            <td style="text-align: right;">{item['unit_price']} {currency}</td>
            <td style="text-align: right;">{item['subtotal']} {currency}</td>
        </tr>"""
        for item in order.get("line_items") or []
    )

    return f"""
<html>
<body style="font-family: sans-serif; font-size: 11px; color: #333;">
    <h1 style="font-size: 20px;">Invoice {escape(order['order_number'])}</h1>
    <p>Issued {escape(issued_on)}</p>

    <h2 style="font-size: 13px;">Billed to</h2>
    <p>{escape(customer.get('name') or '')}<br>{escape(customer.get('email') or '')}</p>
    <p>{address_html}</p>

    <table style="width: 100%;">
        <tr>
            <th style="text-align: left;">Item</th>
            <th style="text-align: center;">Qty</th>
            <th style="text-align: right;">Unit price</th>
            <th style="text-align: right;">Subtotal</th>
        </tr>{item_rows}
    </table>

    <p style="text-align: right;">Subtotal: {order['subtotal']} {currency}</p>
    <p style="text-align: right; font-size: 13px;"><b>Total: {order['total']} {currency}</b></p>
    <p>Paid in full. Thank you for your order.</p>
</body>
</html>
"""


def html_to_pdf(html: str) -> bytes:
    """Lay out HTML on A4 pages and return the PDF bytes."""
    story = fitz.Story(html=html)
    buffer = BytesIO()
    writer = fitz.DocumentWriter(buffer)
    mediabox = fitz.paper_rect("a4")
    where = mediabox + (PAGE_MARGIN, PAGE_MARGIN, -PAGE_MARGIN, -PAGE_MARGIN)

    more = True
    while more:
        device = writer.begin_page(mediabox)
        more, _ = story.place(where)
        story.draw(device)
        writer.end_page()
    writer.close()

    return buffer.getvalue()


class InvoiceService:
    """Service for generating and storing order invoices."""

    def __init__(self, supabase_client: Client | None = None, settings: Settings | None = None):
        """Initialize invoice service.

        Args:
            supabase_client: Optional Supabase client for testing.
            settings: Optional settings for testing.
        """
        self._supabase_client = supabase_client
        self.settings = settings or get_settings()

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def generate_invoice(self, order: Order) -> dict[str, Any]:
        """Render the invoice PDF, store it and link it on the order.

        Generation is best-effort: failures are logged and reported in the
        return value, never raised.

        Args:
            order: The paid order.

        Returns:
            dict: ``{"success": True, "invoice_id": ..., "invoice_url": ...}``
                or ``{"success": False, "error": ...}``.
        """
        order_number = order["order_number"]
        storage_path = f"{order['id']}/invoice-{order_number}.pdf"

        try:
            pdf = html_to_pdf(render_invoice_html(order))

            bucket = self.supabase.storage.from_(self.settings.invoice_storage_bucket)
            bucket.upload(
                path=storage_path,
                file=pdf,
                file_options={"content-type": "application/pdf", "upsert": "true"},
            )
            signed = bucket.create_signed_url(
                path=storage_path,
                expires_in=self.settings.invoice_url_expires_seconds,
            )
            invoice_url = signed["signedURL"]

            (
                self.supabase.table("orders")
                .update({"invoice_id": storage_path, "invoice_url": invoice_url})
                .eq("id", str(order["id"]))
                .execute()
            )

        except Exception as e:
            logger.error("Failed to generate invoice for order %s: %s", order_number, str(e))
            return {"success": False, "error": str(e)}

        logger.info("Invoice for order %s stored at %s (%d bytes)", order_number, storage_path, len(pdf))
        return {"success": True, "invoice_id": storage_path, "invoice_url": invoice_url}
