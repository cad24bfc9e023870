"""Email service using Resend for transactional emails."""

import logging
from html import escape
from typing import Any

import resend

from src.core.config import Settings, get_settings
from src.models.order import Order

logger = logging.getLogger(__name__)


def _format_address(address: dict[str, Any]) -> list[str]:
    lines = [address.get("line1"), address.get("line2")]
    locality = " ".join(
        part for part in (address.get("postal_code"), address.get("city")) if part
    )
    lines.append(locality)
    lines.append(", ".join(part for part in (address.get("region"), address.get("country")) if part))
    return [line for line in lines if line]


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize email service with Resend API key."""
        settings = settings or get_settings()
        resend.api_key = settings.resend_api_key
        self.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url.rstrip("/")

    async def send_order_confirmation(self, order: Order) -> dict[str, Any]:
        """Send the order confirmation email to the buyer.

        Delivery is best-effort: failures are logged and reported in the
        return value, never raised.

        Args:
            order: The paid order.

        Returns:
            dict: ``{"success": True, "email_id": ...}`` or
                ``{"success": False, "error": ...}``.
        """
        customer = order.get("customer") or {}
        to_email = customer.get("email")
        order_number = order["order_number"]

        if not to_email:
            logger.warning("Order %s has no customer email, skipping confirmation", order_number)
            return {"success": False, "error": "Order has no customer email"}

        if not self.api_key:
            logger.warning("Resend API key not configured, skipping confirmation for %s", order_number)
            return {"success": False, "error": "Email is not configured"}

        name = customer.get("name") or "there"
        currency = order.get("currency", "")
        order_url = f"{self.frontend_url}/marketplace/thank-you?order={order_number}"
        address_lines = _format_address(order.get("shipping_address") or {})
        address_html = "<br>".join(escape(line) for line in address_lines)
        has_invoice = bool(order.get("invoice_url"))
        invoice_html = (
            '<p style="font-size: 14px; color: #666;">Please find the invoice attached to this email.</p>'
            if has_invoice
            else ""
        )
        invoice_text = "Please find the invoice attached to this email.\n" if has_invoice else ""

        item_rows = "".join(
            f"""
            <tr>
                <td style="padding: 8px 0;">{escape(item['product_snapshot']['name'])}</td>
                <td style="padding: 8px 0; text-align: center;">{item['quantity']}</td>
                <td style="padding: 8px 0; text-align: right;">{item['subtotal']} {escape(currency)}</td>
            </tr>"""
            for item in order.get("line_items") or []
        )

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Order Confirmation</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px; margin-bottom: 5px;">Thank you for your order, {escape(name)}!</h1>
    <p style="color: #6b7280; margin-top: 0;">Order <strong>{escape(order_number)}</strong></p>

    <table style="width: 100%; border-collapse: collapse; border-top: 1px solid #e5e7eb; border-bottom: 1px solid #e5e7eb;">
        <tr>
            <th style="text-align: left; padding: 8px 0;">Item</th>
            <th style="text-align: center; padding: 8px 0;">Qty</th>
            <th style="text-align: right; padding: 8px 0;">Subtotal</th>
        </tr>{item_rows}
    </table>

    <p style="text-align: right; font-size: 16px;"><strong>Total: {order['total']} {escape(currency)}</strong></p>

    <h2 style="font-size: 16px; margin-bottom: 5px;">Shipping to</h2>
    <p style="margin-top: 0;">{address_html}</p>
    {invoice_html}

    <p style="font-size: 12px; color: #9ca3af; margin-top: 30px;">
        View your order: <a href="{order_url}" style="color: #667eea;">{order_url}</a>
    </p>
</body>
</html>
"""

        item_lines = "\n".join(
            f"- {item['product_snapshot']['name']} x{item['quantity']}: {item['subtotal']} {currency}"
            for item in order.get("line_items") or []
        )
        address_text = "\n".join(address_lines)
        text_content = f"""
Thank you for your order, {name}!

Order {order_number}

{item_lines}

Total: {order['total']} {currency}

Shipping to:
{address_text}

{invoice_text}View your order: {order_url}
"""

        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": f"Order Confirmation - {order_number}",
            "html": html_content,
            "text": text_content,
        }
        if has_invoice:
            params["attachments"] = [
                {"filename": f"invoice-{order_number}.pdf", "path": order["invoice_url"]}
            ]

        try:
            response = resend.Emails.send(params)

            logger.info("Order confirmation for %s sent to %s, id: %s", order_number, to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send order confirmation for %s to %s: %s", order_number, to_email, str(e))
            return {"success": False, "error": str(e)}


def get_email_service() -> EmailService:
    """Get email service instance.

    Returns:
        EmailService: Email service instance.
    """
    return EmailService()
