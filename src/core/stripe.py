"""Stripe client configuration and money helpers."""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from src.core.config import get_settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def configure_stripe() -> None:
    """Configure Stripe SDK with API key from settings.

    This should be called once at application startup.
    If Stripe keys are not configured, Stripe operations will fail with clear errors.
    """
    settings = get_settings()
    stripe.max_network_retries = settings.stripe_max_network_retries
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    else:
        logger.warning("Stripe secret key not configured. Checkout will not work.")
    if not settings.stripe_webhook_secret:
        logger.warning("Stripe webhook secret not configured. Payment webhooks will be rejected.")


def get_stripe() -> Any:
    """Get the configured Stripe module.

    Stripe SDK uses module-level configuration, so this returns the
    stripe module itself. Ensure configure_stripe() has been called
    before using Stripe API calls.
    """
    return stripe


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored numeric value (float, int, str or Decimal) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def quantize_money(value: Any) -> Decimal:
    """Round a major-unit amount to whole cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Convert a major-unit amount to Stripe's integer minor units.

    Rounds half up rather than truncating, so 19.999 becomes 2000 and
    float artifacts such as 0.29 * 100 do not undercharge.
    """
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
