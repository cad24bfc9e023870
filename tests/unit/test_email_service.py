"""Unit tests for EmailService."""

from unittest.mock import patch

import pytest

from src.services.email_service import EmailService


@pytest.fixture
def paid_order(customer, shipping_address) -> dict:
    """Create a paid lamp order."""
    return {
        "id": "660e8400-e29b-41d4-a716-446655440000",
        "order_number": "ORD-LX2A9K3B-7Q0Z",
        "status": "paid",
        "payment_status": "paid",
        "customer": customer,
        "shipping_address": shipping_address,
        "line_items": [
            {
                "product_id": "550e8400-e29b-41d4-a716-446655440000",
                "product_slug": "lamp",
                "product_snapshot": {"name": "Desk Lamp <Brass>", "price": "129.00", "currency": "USD"},
                "quantity": 2,
                "unit_price": "129.00",
                "subtotal": "258.00",
            }
        ],
        "subtotal": "258.00",
        "total": "258.00",
        "currency": "USD",
        "invoice_url": None,
    }


class TestSendOrderConfirmation:
    """Tests for send_order_confirmation."""

    @pytest.mark.asyncio
    async def test_sends_confirmation(self, test_settings, paid_order) -> None:
        """Test that the buyer receives a confirmation with the order summary."""
        service = EmailService(settings=test_settings)

        with patch("src.services.email_service.resend.Emails.send", return_value={"id": "em_123"}) as mock_send:
            result = await service.send_order_confirmation(paid_order)

        assert result == {"success": True, "email_id": "em_123"}
        params = mock_send.call_args.args[0]
        assert params["to"] == ["ada@example.com"]
        assert params["subject"] == "Order Confirmation - ORD-LX2A9K3B-7Q0Z"
        assert "258.00 USD" in params["text"]
        assert "London" in params["text"]
        assert "Desk Lamp &lt;Brass&gt;" in params["html"]
        assert "attachments" not in params
        assert "invoice attached" not in params["text"]

    @pytest.mark.asyncio
    async def test_attaches_invoice(self, test_settings, paid_order) -> None:
        """Test that an issued invoice is attached by URL."""
        paid_order["invoice_url"] = "https://invoices.example.com/ORD-LX2A9K3B-7Q0Z.pdf"
        service = EmailService(settings=test_settings)

        with patch("src.services.email_service.resend.Emails.send", return_value={"id": "em_123"}) as mock_send:
            await service.send_order_confirmation(paid_order)

        [attachment] = mock_send.call_args.args[0]["attachments"]
        assert attachment == {
            "filename": "invoice-ORD-LX2A9K3B-7Q0Z.pdf",
            "path": "https://invoices.example.com/ORD-LX2A9K3B-7Q0Z.pdf",
        }
        assert "invoice attached" in mock_send.call_args.args[0]["text"]

    @pytest.mark.asyncio
    async def test_send_failure_is_reported_not_raised(self, test_settings, paid_order) -> None:
        """Test that Resend errors come back as a failed result."""
        service = EmailService(settings=test_settings)

        with patch("src.services.email_service.resend.Emails.send", side_effect=Exception("rate limited")):
            result = await service.send_order_confirmation(paid_order)

        assert result == {"success": False, "error": "rate limited"}

    @pytest.mark.asyncio
    async def test_missing_email_is_skipped(self, test_settings, paid_order) -> None:
        """Test that orders without a buyer email send nothing."""
        paid_order["customer"] = {"name": "Ada"}
        service = EmailService(settings=test_settings)

        with patch("src.services.email_service.resend.Emails.send") as mock_send:
            result = await service.send_order_confirmation(paid_order)

        assert result["success"] is False
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_unconfigured_api_key_is_skipped(self, test_settings, paid_order) -> None:
        """Test that a missing Resend key skips delivery."""
        service = EmailService(settings=test_settings.model_copy(update={"resend_api_key": ""}))

        with patch("src.services.email_service.resend.Emails.send") as mock_send:
            result = await service.send_order_confirmation(paid_order)

        assert result["success"] is False
        mock_send.assert_not_called()
