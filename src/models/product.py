"""Product model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class ProductStatus(str, Enum):
    """Publication status of a product."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class ValidationStatus(str, Enum):
    """Content validation status values.

    Only CHECKED products may be sold.
    """

    PENDING = "pending"
    CHECKED = "checked"
    BLOCKED = "blocked"
    NEEDS_REVIEW = "needs_review"


class Product(TypedDict):
    """Product table row representation.

    Represents a product stored in the products table.
    """

    id: UUID
    slug: str
    name: str
    description: str | None
    price: Decimal | float | str
    currency: str
    inventory: int
    status: str
    validation_status: str
    manually_verified: bool
    vendor_id: UUID | None
    created_at: datetime
    updated_at: datetime


class ProductUpdate(TypedDict, total=False):
    """Data that can be updated on a product."""

    name: str
    description: str | None
    price: str
    inventory: int
    status: str
    validation_status: str
    manually_verified: bool
