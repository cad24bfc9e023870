"""Checkout orchestration: order first, then the payment session."""

import logging
from typing import Any

from src.api.middleware.error_handler import (
    OrderNotFoundError,
    OrderStateConflictError,
    PaymentProviderUnavailableError,
)
from src.models.order import CheckoutMode, Order, PaymentSession
from src.services.order_service import OrderService
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service for starting and resuming checkout."""

    def __init__(
        self,
        order_service: OrderService | None = None,
        payment_service: PaymentService | None = None,
    ) -> None:
        """Initialize checkout service.

        Args:
            order_service: Optional order service for testing.
            payment_service: Optional payment service for testing.
        """
        self.order_service = order_service or OrderService()
        self.payment_service = payment_service or PaymentService()

    async def start_checkout(
        self,
        product_slug: str,
        quantity: Any,
        customer: dict[str, Any],
        shipping_address: dict[str, Any],
        mode: CheckoutMode = "hosted",
    ) -> dict[str, Any]:
        """Create a pending order and a payment session for it.

        The order exists before the provider is contacted, so a provider
        failure leaves a pending order that can be retried by number.

        Args:
            product_slug: Product to buy.
            quantity: Units requested.
            customer: Buyer contact details.
            shipping_address: Delivery address.
            mode: ``hosted`` or ``embedded``.

        Returns:
            dict: order_id, order_number, mode and the session fields.
        """
        order = await self.order_service.create_order(
            product_slug=product_slug,
            quantity=quantity,
            customer=customer,
            shipping_address=shipping_address,
        )
        return await self._open_session(order, mode)

    async def resume_checkout(self, order_number: str, mode: CheckoutMode = "hosted") -> dict[str, Any]:
        """Open a payment session for an existing pending order.

        Used after a provider timeout or when the buyer comes back from a
        cancelled hosted page.

        Args:
            order_number: Number of the pending order.
            mode: ``hosted`` or ``embedded``.

        Returns:
            dict: order_id, order_number, mode and the session fields.

        Raises:
            OrderNotFoundError: If no order has this number.
            OrderStateConflictError: If the order is no longer awaiting payment.
        """
        order = await self.order_service.get_order_by_number(order_number)
        if not order:
            raise OrderNotFoundError()

        if order["status"] != "pending" or order["payment_status"] != "unpaid":
            logger.info(
                "Refusing to resume checkout for order %s in state %s/%s",
                order_number,
                order["status"],
                order["payment_status"],
            )
            raise OrderStateConflictError(f"Order {order_number} is no longer awaiting payment")

        return await self._open_session(order, mode)

    async def _open_session(self, order: Order, mode: CheckoutMode) -> dict[str, Any]:
        try:
            session: PaymentSession = await self.payment_service.create_payment_session(
                order,
                order["line_items"][0],
                mode,
            )
        except PaymentProviderUnavailableError as e:
            # The order stays pending; tell the client which one to retry
            if not e.details:
                e.details = [
                    {
                        "loc": ["order_number"],
                        "msg": order["order_number"],
                        "type": "retry_with_order_number",
                    }
                ]
            raise

        await self.order_service.attach_payment_session(order, session)

        return {
            "order_id": order["id"],
            "order_number": order["order_number"],
            **session,
        }


def get_checkout_service() -> CheckoutService:
    """Get checkout service instance.

    Returns:
        CheckoutService: Checkout service instance.
    """
    return CheckoutService()
