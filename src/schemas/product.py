"""Product Pydantic schemas for API request/response models."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.product import ProductStatus, ValidationStatus


class ProductResponse(BaseModel):
    """Schema for purchasable product responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Product unique identifier")
    slug: str = Field(description="URL-safe product identifier")
    name: str = Field(description="Product name")
    description: str | None = Field(default=None, description="Product description")
    price: Decimal = Field(ge=0, description="Unit price")
    currency: str = Field(description="Currency code")
    inventory: int = Field(description="Units in stock")
    in_stock: bool = Field(description="Whether any units are available")


class ProductEditRequest(BaseModel):
    """Schema for a vendor or admin product edit.

    Only fields that are present are applied.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=255, description="Product name")
    description: str | None = Field(default=None, description="Product description")
    price: Decimal | None = Field(default=None, ge=0, description="Unit price")
    inventory: int | None = Field(default=None, ge=0, description="Units in stock")
    status: ProductStatus | None = Field(default=None, description="Publication status")
    manually_verified: bool | None = Field(default=None, description="Turn the manual override on or off")
    validation_status: ValidationStatus | None = Field(
        default=None,
        description="Status to pin; only accepted with manually_verified true or on an already overridden product",
    )


class ProductEditResponse(BaseModel):
    """Schema for the product edit result."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Product unique identifier")
    slug: str = Field(description="URL-safe product identifier")
    name: str = Field(description="Product name")
    status: str = Field(description="Publication status")
    validation_status: str = Field(description="Content validation status")
    manually_verified: bool = Field(description="Whether the status is a manual override")
