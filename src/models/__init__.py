"""Database model type definitions."""

from src.models.order import Order, OrderLineItem, PaymentSession
from src.models.product import Product, ProductStatus, ValidationStatus

__all__ = [
    "Order",
    "OrderLineItem",
    "PaymentSession",
    "Product",
    "ProductStatus",
    "ValidationStatus",
]
