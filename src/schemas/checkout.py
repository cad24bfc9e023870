"""Checkout and order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


CheckoutMode = Literal["hosted", "embedded"]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _CamelModel(BaseModel):
    """Accepts both snake_case and the storefront's camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class CustomerSchema(_CamelModel):
    """Buyer contact details."""

    name: str = Field(min_length=1, max_length=255, description="Full name")
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320, description="Email for the confirmation")
    phone: str | None = Field(default=None, max_length=50, description="Contact phone")


class ShippingAddressSchema(_CamelModel):
    """Delivery address."""

    line1: str = Field(min_length=1, max_length=255, description="Street address")
    line2: str | None = Field(default=None, max_length=255, description="Apartment, suite, etc.")
    city: str = Field(min_length=1, max_length=120, description="City")
    region: str | None = Field(default=None, max_length=120, description="State or region")
    postal_code: str | None = Field(default=None, max_length=20, description="Postal code")
    country: str = Field(min_length=2, max_length=2, description="ISO 3166-1 alpha-2 country code")


class CheckoutSessionCreate(_CamelModel):
    """Schema for creating a payment session via POST /checkout/session.

    Either a new cart (product, quantity, customer, shipping address) or the
    number of an existing pending order to retry.
    """

    product_slug: str | None = Field(default=None, min_length=1, description="Product to buy")
    quantity: int = Field(default=1, ge=1, strict=True, description="Units to buy")
    mode: CheckoutMode = Field(default="hosted", description="Hosted redirect or embedded form")
    customer: CustomerSchema | None = Field(default=None, description="Buyer contact details")
    shipping_address: ShippingAddressSchema | None = Field(default=None, description="Delivery address")
    order_number: str | None = Field(default=None, description="Existing pending order to retry")

    @model_validator(mode="after")
    def require_cart_or_order(self) -> "CheckoutSessionCreate":
        """Reject requests that name neither a cart nor an existing order."""
        if self.order_number:
            return self
        missing = [
            name
            for name in ("product_slug", "customer", "shipping_address")
            if getattr(self, name) is None
        ]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        return self


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session creation response."""

    model_config = ConfigDict(from_attributes=True)

    order_id: UUID = Field(description="Created order UUID")
    order_number: str = Field(description="Human-facing order number")
    mode: CheckoutMode = Field(description="Checkout mode")
    url: str | None = Field(default=None, description="Hosted checkout URL to redirect to")
    session_id: str | None = Field(default=None, description="Stripe Checkout Session ID")
    client_secret: str | None = Field(default=None, description="Embedded payment client secret")
    payment_intent_id: str | None = Field(default=None, description="Stripe PaymentIntent ID")


class OrderLineItemSchema(BaseModel):
    """Schema for a single line item in an order."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str = Field(description="Product UUID")
    product_slug: str = Field(description="Product slug")
    product_name: str = Field(description="Product name at order time")
    quantity: int = Field(ge=1, description="Quantity ordered")
    unit_price: Decimal = Field(ge=0, description="Unit price at order time")
    subtotal: Decimal = Field(ge=0, description="unit_price * quantity")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-facing order number")
    status: str = Field(description="Order status")
    payment_status: str = Field(description="Payment status")
    line_items: list[OrderLineItemSchema] = Field(description="Order line items")
    subtotal: Decimal = Field(description="Sum of line subtotals")
    total: Decimal = Field(description="Amount charged")
    currency: str = Field(description="Currency code")
    invoice_url: str | None = Field(default=None, description="Invoice document link")
    paid_at: datetime | None = Field(default=None, description="Payment confirmation timestamp")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")

    @classmethod
    def from_order(cls, order: dict) -> "OrderResponse":
        """Build a response from an orders row, flattening product snapshots."""
        line_items = [
            OrderLineItemSchema(
                product_id=str(item["product_id"]),
                product_slug=item.get("product_slug", ""),
                product_name=(item.get("product_snapshot") or {}).get("name", ""),
                quantity=item["quantity"],
                unit_price=Decimal(str(item["unit_price"])),
                subtotal=Decimal(str(item["subtotal"])),
            )
            for item in order.get("line_items") or []
        ]
        return cls(
            id=order["id"],
            order_number=order["order_number"],
            status=order["status"],
            payment_status=order["payment_status"],
            line_items=line_items,
            subtotal=Decimal(str(order["subtotal"])),
            total=Decimal(str(order["total"])),
            currency=order["currency"],
            invoice_url=order.get("invoice_url"),
            paid_at=order.get("paid_at"),
            created_at=order.get("created_at"),
        )
