"""Payment session initiator backed by Stripe."""

import asyncio
import logging
from functools import partial
from typing import Any, Callable
from urllib.parse import quote

import stripe

from src.api.middleware.error_handler import (
    InvalidPaymentAmountError,
    PaymentProviderRejectedError,
    PaymentProviderTimeoutError,
    PaymentProviderUnavailableError,
)
from src.core.config import Settings, get_settings
from src.core.stripe import get_stripe, to_minor_units
from src.models.order import CheckoutMode, Order, OrderLineItem, PaymentSession

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def build_payment_metadata(order: Order, line_item: OrderLineItem) -> dict[str, str]:
    """Correlation metadata attached to every provider object for an order.

    The webhook reconciler relies on these keys to find the order again.
    """
    return {
        "order_id": str(order["id"]),
        "order_number": order["order_number"],
        "product_id": str(line_item["product_id"]),
        "product_slug": line_item["product_slug"],
    }


class PaymentService:
    """Service for creating Stripe payment sessions for pending orders."""

    def __init__(self, stripe_client: Any | None = None, settings: Settings | None = None):
        """Initialize payment service.

        Args:
            stripe_client: Optional Stripe module or stand-in for testing.
            settings: Optional settings for testing.
        """
        self._stripe = stripe_client
        self.settings = settings or get_settings()

    @property
    def stripe(self) -> Any:
        """Get configured Stripe module."""
        if self._stripe is None:
            self._stripe = get_stripe()
        return self._stripe

    async def create_payment_session(
        self,
        order: Order,
        line_item: OrderLineItem | None = None,
        mode: CheckoutMode = "hosted",
    ) -> PaymentSession:
        """Create a payment session for an order.

        Args:
            order: Pending order to charge.
            line_item: Line item to charge; defaults to the order's first.
            mode: ``hosted`` for a Checkout redirect, ``embedded`` for a
                PaymentIntent confirmed by an on-page form.

        Returns:
            PaymentSession: Hosted URL or embedded client secret.

        Raises:
            InvalidPaymentAmountError: If the charge amount is not positive.
            PaymentProviderUnavailableError: If Stripe is not configured or unreachable.
            PaymentProviderRejectedError: If Stripe refuses the request.
            PaymentProviderTimeoutError: If Stripe does not answer in time.
        """
        if line_item is None:
            line_item = order["line_items"][0]

        unit_amount = to_minor_units(line_item["unit_price"])
        total_amount = to_minor_units(order["total"])
        if unit_amount <= 0 or total_amount <= 0:
            logger.warning(
                "Refusing payment session for order %s with amount %s",
                order["order_number"],
                order["total"],
            )
            raise InvalidPaymentAmountError()

        if not self.settings.stripe_secret_key:
            raise PaymentProviderUnavailableError("Stripe is not configured.")

        metadata = build_payment_metadata(order, line_item)

        if mode == "embedded":
            call = partial(
                self.stripe.PaymentIntent.create,
                **self._payment_intent_params(order, total_amount, metadata),
                idempotency_key=f"payment-intent-{order['id']}",
            )
            intent = await self._call_stripe(call, order)
            logger.info("Created PaymentIntent %s for order %s", intent.id, order["order_number"])
            return {
                "mode": "embedded",
                "session_id": None,
                "url": None,
                "client_secret": intent.client_secret,
                "payment_intent_id": intent.id,
            }

        call = partial(
            self.stripe.checkout.Session.create,
            **self._checkout_session_params(order, line_item, unit_amount, metadata),
            idempotency_key=f"checkout-session-{order['id']}",
        )
        session = await self._call_stripe(call, order)
        logger.info("Created Checkout Session %s for order %s", session.id, order["order_number"])
        return {
            "mode": "hosted",
            "session_id": session.id,
            "url": session.url,
            "client_secret": None,
            "payment_intent_id": None,
        }

    def _checkout_session_params(
        self,
        order: Order,
        line_item: OrderLineItem,
        unit_amount: int,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        snapshot = line_item["product_snapshot"]
        frontend = self.settings.frontend_url.rstrip("/")
        order_number = quote(order["order_number"])

        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": order["currency"].lower(),
                        "product_data": {"name": snapshot["name"]},
                        "unit_amount": unit_amount,
                    },
                    "quantity": line_item["quantity"],
                }
            ],
            "client_reference_id": order["order_number"],
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": (
                f"{frontend}/marketplace/thank-you?order={order_number}"
                f"&session_id={CHECKOUT_SESSION_PLACEHOLDER}"
            ),
            "cancel_url": (
                f"{frontend}/marketplace/{quote(line_item['product_slug'])}/checkout"
                f"?order={order_number}"
            ),
        }

        email = (order.get("customer") or {}).get("email")
        if email:
            params["customer_email"] = email
        return params

    def _payment_intent_params(
        self,
        order: Order,
        total_amount: int,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "amount": total_amount,
            "currency": order["currency"].lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
            "description": f"Order {order['order_number']}",
        }

        email = (order.get("customer") or {}).get("email")
        if email:
            params["receipt_email"] = email
        return params

    async def _call_stripe(self, call: Callable[[], Any], order: Order) -> Any:
        """Run a blocking Stripe call in the executor under the configured timeout."""
        loop = asyncio.get_running_loop()
        timeout = self.settings.stripe_timeout_seconds

        try:
            return await asyncio.wait_for(loop.run_in_executor(None, call), timeout=timeout)

        except asyncio.TimeoutError as e:
            logger.error(
                "Stripe call timed out after %.1fs for order %s",
                timeout,
                order["order_number"],
            )
            raise PaymentProviderTimeoutError(
                details=[
                    {
                        "loc": ["order_number"],
                        "msg": order["order_number"],
                        "type": "retry_with_order_number",
                    }
                ]
            ) from e

        except (stripe.InvalidRequestError, stripe.CardError) as e:
            logger.error("Stripe rejected session for order %s: %s", order["order_number"], e)
            raise PaymentProviderRejectedError() from e

        except stripe.StripeError as e:
            logger.error("Stripe error for order %s: %s", order["order_number"], e)
            raise PaymentProviderUnavailableError() from e


def get_payment_service() -> PaymentService:
    """Get payment service instance.

    Returns:
        PaymentService: Payment service instance.
    """
    return PaymentService()
