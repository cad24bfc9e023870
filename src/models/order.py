"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict
from uuid import UUID


# Status values matching the orders table check constraints
OrderStatus = Literal["pending", "paid", "shipped", "cancelled"]
PaymentStatus = Literal["unpaid", "paid", "refunded"]
CheckoutMode = Literal["hosted", "embedded"]


class Customer(TypedDict, total=False):
    """Buyer contact details captured at checkout."""

    name: str
    email: str
    phone: str | None


class ShippingAddress(TypedDict, total=False):
    """Delivery address captured at checkout."""

    line1: str
    line2: str | None
    city: str
    region: str | None
    postal_code: str | None
    country: str


class ProductSnapshot(TypedDict):
    """Product facts frozen into a line item at order time."""

    name: str
    price: str
    currency: str


class OrderLineItem(TypedDict):
    """Structure for a single line item in an order.

    Stored as part of the line_items JSONB array. Money fields are
    two-decimal strings.
    """

    product_id: str
    product_slug: str
    product_snapshot: ProductSnapshot
    quantity: int
    unit_price: str
    subtotal: str


class Order(TypedDict):
    """Order table row representation.

    Represents an order stored in the orders table.
    Maps directly to the database schema.
    """

    id: UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer: Customer
    shipping_address: ShippingAddress
    line_items: list[OrderLineItem]
    subtotal: str
    total: str
    currency: str
    invoice_id: str | None
    invoice_url: str | None
    metadata: dict[str, Any]
    paid_at: datetime | None
    inventory_claimed_at: datetime | None
    inventory_adjusted_at: datetime | None
    invoice_generated_at: datetime | None
    confirmation_sent_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data required to create a new order."""

    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer: Customer
    shipping_address: ShippingAddress
    line_items: list[OrderLineItem]
    subtotal: str
    total: str
    currency: str
    metadata: dict[str, Any]


class PaymentSession(TypedDict, total=False):
    """Provider payment session handed back to the buyer.

    Hosted sessions carry ``url``; embedded sessions carry
    ``client_secret`` and ``payment_intent_id``.
    """

    mode: CheckoutMode
    session_id: str | None
    url: str | None
    client_secret: str | None
    payment_intent_id: str | None
