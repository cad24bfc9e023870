"""Catalog reader for purchasable products."""

import logging
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import ProductNotFoundError
from src.core.supabase import get_supabase_client
from src.models.product import Product, ProductStatus, ValidationStatus

logger = logging.getLogger(__name__)


def is_purchasable(product: dict[str, Any]) -> bool:
    """Return True if the product is published and its content is validated."""
    return (
        product.get("status") == ProductStatus.ACTIVE.value
        and product.get("validation_status") == ValidationStatus.CHECKED.value
    )


class CatalogService:
    """Service for reading products from the catalog."""

    def __init__(self, supabase_client: Client | None = None):
        """Initialize catalog service.

        Args:
            supabase_client: Optional Supabase client for testing.
        """
        self._supabase_client = supabase_client

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def find_active_product(self, slug: str) -> Product:
        """Resolve a slug to a product that may be sold right now.

        Draft, archived and unvalidated products are reported exactly like
        missing ones. Store failures are logged and also reported as not
        found, so no internal error text reaches the buyer.

        Args:
            slug: Product slug.

        Returns:
            Product: The purchasable product.

        Raises:
            ProductNotFoundError: If no purchasable product has this slug.
        """
        if not slug or not slug.strip():
            raise ProductNotFoundError()

        try:
            result = (
                self.supabase.table("products")
                .select("*")
                .eq("slug", slug.strip())
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Catalog lookup failed for slug %s: %s", slug, e)
            raise ProductNotFoundError() from e

        rows = result.data if result and result.data else []
        if not rows:
            logger.info("Product not found for slug %s", slug)
            raise ProductNotFoundError()

        product = rows[0]
        if not is_purchasable(product):
            logger.info(
                "Product %s is not purchasable (status=%s, validation_status=%s)",
                slug,
                product.get("status"),
                product.get("validation_status"),
            )
            raise ProductNotFoundError()

        return product

    async def get_product(self, product_id: str) -> Product | None:
        """Get a product by ID regardless of its status.

        Args:
            product_id: Product UUID.

        Returns:
            Product or None if not found.
        """
        result = (
            self.supabase.table("products")
            .select("*")
            .eq("id", str(product_id))
            .maybe_single()
            .execute()
        )
        return result.data if result and result.data else None


def get_catalog_service() -> CatalogService:
    """Get catalog service instance.

    Returns:
        CatalogService: Catalog service instance.
    """
    return CatalogService()
