"""Product API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from src.api.deps import AdminKey
from src.schemas.product import ProductEditRequest, ProductEditResponse, ProductResponse
from src.services.catalog_service import CatalogService, get_catalog_service
from src.services.product_validation_service import (
    ProductValidationService,
    get_product_validation_service,
)

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/{slug}", response_model=ProductResponse)
async def get_product(
    slug: str,
    catalog_service: CatalogService = Depends(get_catalog_service),
) -> ProductResponse:
    """Get a purchasable product by slug.

    Products that are not active and checked are reported as not found.
    """
    product = await catalog_service.find_active_product(slug)
    return ProductResponse(
        id=product["id"],
        slug=product["slug"],
        name=product["name"],
        description=product.get("description"),
        price=product["price"],
        currency=product.get("currency") or "USD",
        inventory=product.get("inventory") or 0,
        in_stock=(product.get("inventory") or 0) > 0,
    )


@router.patch("/{product_id}", response_model=ProductEditResponse)
async def edit_product(
    product_id: UUID,
    data: ProductEditRequest,
    _: AdminKey,
    validation_service: ProductValidationService = Depends(get_product_validation_service),
) -> ProductEditResponse:
    """Edit a product and recompute its validation state.

    Content changes send the product back through the classifier unless
    it is manually verified.
    """
    changes = data.model_dump(exclude_unset=True)
    product = await validation_service.apply_edit(str(product_id), changes)
    return ProductEditResponse(**{k: product[k] for k in ProductEditResponse.model_fields})
