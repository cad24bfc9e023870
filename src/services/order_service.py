"""Order builder: turns a cart request into a persisted pending order."""

import logging
import secrets
import string
import time
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.api.middleware.error_handler import InvalidInputError, InvalidQuantityError
from src.core.config import Settings, get_settings
from src.core.stripe import quantize_money
from src.core.supabase import get_supabase_client
from src.models.order import Order, OrderLineItem, PaymentSession
from src.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"

BASE36_ALPHABET = string.digits + string.ascii_uppercase
ORDER_NUMBER_SUFFIX_LENGTH = 4

REQUIRED_CUSTOMER_FIELDS = ("name", "email")
REQUIRED_ADDRESS_FIELDS = ("line1", "city", "country")


def to_base36(value: int) -> str:
    """Encode a non-negative integer in upper-case base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """Generate a human-facing order number.

    Format is ``ORD-<base36 millisecond timestamp>-<4 random base36>``. The
    random suffix keeps numbers distinct within the same millisecond; the
    unique index on ``orders.order_number`` catches whatever is left.
    """
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH))
    return f"ORD-{timestamp}-{suffix}"


def validate_quantity(quantity: Any, max_quantity: int | None = None) -> int:
    """Return quantity as an int or raise InvalidQuantityError.

    Booleans, fractional numbers and non-numeric values are rejected.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError()
    if quantity < 1:
        raise InvalidQuantityError()
    if max_quantity is not None and quantity > max_quantity:
        raise InvalidQuantityError(f"Quantity cannot exceed {max_quantity}")
    return quantity


def _require_fields(data: dict[str, Any] | None, fields: tuple[str, ...], loc: str) -> dict[str, Any]:
    data = dict(data or {})
    missing = [name for name in fields if not str(data.get(name) or "").strip()]
    if missing:
        raise InvalidInputError(
            f"Missing required {loc.replace('_', ' ')} fields",
            details=[
                {"loc": [loc, name], "msg": "Field required", "type": "missing"}
                for name in missing
            ],
        )
    return data


class OrderService:
    """Service for creating and reading orders."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        catalog_service: CatalogService | None = None,
        settings: Settings | None = None,
    ):
        """Initialize order service.

        Args:
            supabase_client: Optional Supabase client for testing.
            catalog_service: Optional catalog service for testing.
            settings: Optional settings for testing.
        """
        self._supabase_client = supabase_client
        self._catalog_service = catalog_service
        self.settings = settings or get_settings()

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    @property
    def catalog(self) -> CatalogService:
        """Get catalog service."""
        if self._catalog_service is None:
            self._catalog_service = CatalogService(supabase_client=self._supabase_client)
        return self._catalog_service

    async def create_order(
        self,
        product_slug: str,
        quantity: Any,
        customer: dict[str, Any],
        shipping_address: dict[str, Any],
    ) -> Order:
        """Create a pending, unpaid order for a single product.

        The product is re-resolved here so prices always come from the
        catalog, never from the client.

        Args:
            product_slug: Slug of the product to buy.
            quantity: Units requested, a positive integer.
            customer: Buyer name, email and optional phone.
            shipping_address: Delivery address.

        Returns:
            Order: The inserted orders row.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            InvalidInputError: If customer or address fields are missing.
            ProductNotFoundError: If the product is not purchasable.
        """
        quantity = validate_quantity(quantity, self.settings.max_order_quantity)
        customer = _require_fields(customer, REQUIRED_CUSTOMER_FIELDS, "customer")
        shipping_address = _require_fields(shipping_address, REQUIRED_ADDRESS_FIELDS, "shipping_address")

        product = await self.catalog.find_active_product(product_slug)

        unit_price = quantize_money(product["price"])
        subtotal = quantize_money(unit_price * quantity)
        currency = (product.get("currency") or self.settings.default_currency).upper()

        line_item: OrderLineItem = {
            "product_id": str(product["id"]),
            "product_slug": product["slug"],
            "product_snapshot": {
                "name": product["name"],
                "price": str(unit_price),
                "currency": currency,
            },
            "quantity": quantity,
            "unit_price": str(unit_price),
            "subtotal": str(subtotal),
        }

        order_data = {
            "status": "pending",
            "payment_status": "unpaid",
            "customer": customer,
            "shipping_address": shipping_address,
            "line_items": [line_item],
            "subtotal": str(subtotal),
            "total": str(subtotal),
            "currency": currency,
            "metadata": {},
        }

        order = self._insert_with_order_number(order_data)
        logger.info(
            "Created order %s for %s x%d (total=%s %s)",
            order["order_number"],
            product["slug"],
            quantity,
            subtotal,
            currency,
        )
        return order

    def _insert_with_order_number(self, order_data: dict[str, Any]) -> Order:
        """Insert an order, regenerating the order number on collision."""
        max_attempts = self.settings.order_number_max_attempts

        for attempt in range(1, max_attempts + 1):
            row = {**order_data, "order_number": generate_order_number()}
            try:
                result = self.supabase.table("orders").insert(row).execute()
            except PostgrestAPIError as e:
                if e.code == UNIQUE_VIOLATION and attempt < max_attempts:
                    logger.warning(
                        "Order number %s already taken, regenerating (attempt %d/%d)",
                        row["order_number"],
                        attempt,
                        max_attempts,
                    )
                    continue
                raise

            if not result.data:
                raise Exception("Failed to create order")
            return result.data[0]

        raise Exception("Failed to create order")

    async def get_order(self, order_id: str) -> Order | None:
        """Get an order by ID.

        Args:
            order_id: The order's UUID.

        Returns:
            Order | None: The order data or None if not found.
        """
        response = (
            self.supabase.table("orders")
            .select("*")
            .eq("id", str(order_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_order_by_number(self, order_number: str) -> Order | None:
        """Get an order by its human-facing number.

        Args:
            order_number: Order number such as ``ORD-LX2A9K3B-7Q0Z``.

        Returns:
            Order | None: The order data or None if not found.
        """
        response = (
            self.supabase.table("orders")
            .select("*")
            .eq("order_number", order_number)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def attach_payment_session(self, order: Order, session: PaymentSession) -> Order:
        """Record payment session identifiers on the order.

        Only ``metadata`` is written; status fields and the order number
        are left alone.

        Args:
            order: The order the session was created for.
            session: Payment session returned by the payment service.

        Returns:
            Order: The updated order.
        """
        metadata = dict(order.get("metadata") or {})
        metadata["checkout_mode"] = session.get("mode")
        if session.get("session_id"):
            metadata["stripe_checkout_session_id"] = session["session_id"]
        if session.get("payment_intent_id"):
            metadata["stripe_payment_intent_id"] = session["payment_intent_id"]

        response = (
            self.supabase.table("orders")
            .update({"metadata": metadata})
            .eq("id", str(order["id"]))
            .execute()
        )
        if response.data:
            return response.data[0]
        return {**order, "metadata": metadata}


def get_order_service() -> OrderService:
    """Get order service instance.

    Returns:
        OrderService: Order service instance.
    """
    return OrderService()
