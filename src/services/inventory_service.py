"""Inventory adjuster: decrements product stock after a confirmed payment."""

import asyncio
import logging
from typing import Any

from supabase import Client
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from src.api.middleware.error_handler import InventoryConflictError
from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.services.order_service import validate_quantity

logger = logging.getLogger(__name__)

# Jitter between compare-and-set attempts (seconds)
MAX_RETRY_JITTER_SECONDS = 0.05


class StaleInventoryError(Exception):
    """Stock changed between the read and the conditional write."""


class InventoryService:
    """Service for adjusting product stock levels."""

    def __init__(self, supabase_client: Client | None = None, settings: Settings | None = None):
        """Initialize inventory service.

        Args:
            supabase_client: Optional Supabase client for testing.
            settings: Optional settings for testing.
        """
        self._supabase_client = supabase_client
        self.settings = settings or get_settings()

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def decrement_inventory(self, product_id: str, quantity: Any) -> int | None:
        """Reduce a product's stock by quantity, never below zero.

        Stock at or below zero is left untouched. Concurrent decrements are
        serialized by writing only when the stock still holds the value that
        was read, retrying when it does not.

        Args:
            product_id: Product UUID.
            quantity: Units sold, a positive integer.

        Returns:
            int | None: Stock after the call, or None if the product is gone.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            InventoryConflictError: If every attempt lost a concurrent race.
        """
        quantity = validate_quantity(quantity)

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.settings.inventory_max_attempts),
            wait=wait_random(0, MAX_RETRY_JITTER_SECONDS),
            retry=retry_if_exception_type(StaleInventoryError),
            reraise=True,
            sleep=asyncio.sleep,
        )

        try:
            return await retryer(self._compare_and_set, str(product_id), quantity)
        except StaleInventoryError as e:
            logger.error(
                "Gave up decrementing inventory for product %s after %d attempts",
                product_id,
                self.settings.inventory_max_attempts,
            )
            raise InventoryConflictError(f"Inventory for product {product_id} kept changing") from e

    async def _compare_and_set(self, product_id: str, quantity: int) -> int | None:
        result = (
            self.supabase.table("products")
            .select("id, inventory")
            .eq("id", product_id)
            .maybe_single()
            .execute()
        )
        product = result.data if result and result.data else None
        if not product:
            logger.warning("Product %s not found, skipping inventory decrement", product_id)
            return None

        current = product.get("inventory")
        if current is None or current <= 0:
            logger.info("Product %s has no stock to decrement (inventory=%s)", product_id, current)
            return current

        if current < quantity:
            logger.warning(
                "Product %s oversold: %d in stock, %d sold; clamping to zero",
                product_id,
                current,
                quantity,
            )
        new_inventory = max(current - quantity, 0)

        update = (
            self.supabase.table("products")
            .update({"inventory": new_inventory})
            .eq("id", product_id)
            .eq("inventory", current)
            .execute()
        )
        if not update.data:
            logger.info("Inventory for product %s changed concurrently, retrying", product_id)
            raise StaleInventoryError(product_id)

        logger.info("Product %s inventory %d -> %d", product_id, current, new_inventory)
        return new_inventory


def get_inventory_service() -> InventoryService:
    """Get inventory service instance.

    Returns:
        InventoryService: Inventory service instance.
    """
    return InventoryService()
