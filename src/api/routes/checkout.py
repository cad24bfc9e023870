"""Checkout and order API routes."""

import logging
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, status
from fastapi.responses import RedirectResponse

from src.api.middleware.error_handler import APIError, OrderNotFoundError, ProductNotFoundError
from src.core.config import get_settings
from src.schemas.checkout import CheckoutSessionCreate, CheckoutSessionResponse, OrderResponse
from src.services.checkout_service import CheckoutService, get_checkout_service
from src.services.order_service import OrderService, get_order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/session",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payment session",
    description=(
        "Creates a pending order and a Stripe payment session for it, or a new "
        "session for an existing pending order when order_number is given."
    ),
)
async def create_checkout_session(
    data: CheckoutSessionCreate,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutSessionResponse:
    """Create a payment session.

    Hosted sessions return a ``url`` to redirect to; embedded sessions
    return a ``client_secret`` for the on-page payment form.

    Args:
        data: Cart or retry request.
        checkout_service: Checkout orchestration service.

    Returns:
        CheckoutSessionResponse: Order identifiers and session handle.
    """
    if data.order_number:
        result = await checkout_service.resume_checkout(data.order_number, data.mode)
    else:
        result = await checkout_service.start_checkout(
            product_slug=data.product_slug,
            quantity=data.quantity,
            customer=data.customer.model_dump(),
            shipping_address=data.shipping_address.model_dump(),
            mode=data.mode,
        )

    return CheckoutSessionResponse(**result)


# Orders router - mounted separately at /orders
orders_router = APIRouter(prefix="/orders", tags=["orders"])


def _parse_quantity(raw: str) -> int | str:
    try:
        return int(raw.strip())
    except ValueError:
        return raw


@orders_router.post(
    "",
    status_code=status.HTTP_303_SEE_OTHER,
    response_class=RedirectResponse,
    summary="Submit checkout form",
    description="Creates an order from the storefront checkout form and redirects to Stripe Checkout.",
)
async def submit_checkout_form(
    product_slug: Annotated[str, Form(alias="productSlug")],
    name: Annotated[str, Form()],
    email: Annotated[str, Form()],
    line1: Annotated[str, Form()],
    city: Annotated[str, Form()],
    country: Annotated[str, Form()],
    quantity: Annotated[str, Form()] = "1",
    phone: Annotated[str | None, Form()] = None,
    line2: Annotated[str | None, Form()] = None,
    region: Annotated[str | None, Form()] = None,
    postal_code: Annotated[str | None, Form(alias="postalCode")] = None,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> RedirectResponse:
    """Handle the storefront's plain HTML checkout form.

    Errors never surface as JSON here; the buyer is sent back to the
    checkout page with an error code instead.

    Returns:
        RedirectResponse: 303 to Stripe, or back to the storefront on error.
    """
    frontend = get_settings().frontend_url.rstrip("/")

    try:
        result = await checkout_service.start_checkout(
            product_slug=product_slug,
            quantity=_parse_quantity(quantity),
            customer={"name": name, "email": email, "phone": phone},
            shipping_address={
                "line1": line1,
                "line2": line2,
                "city": city,
                "region": region,
                "postal_code": postal_code,
                "country": country,
            },
            mode="hosted",
        )
    except ProductNotFoundError:
        return RedirectResponse(f"{frontend}/marketplace?missingProduct=1", status_code=status.HTTP_303_SEE_OTHER)
    except APIError as e:
        logger.warning("Checkout form for %s failed: %s - %s", product_slug, e.error_type, e.message)
        return RedirectResponse(
            f"{frontend}/marketplace/{quote(product_slug)}/checkout?error={e.error_type}",
            status_code=status.HTTP_303_SEE_OTHER,
        )

    return RedirectResponse(result["url"], status_code=status.HTTP_303_SEE_OTHER)


@orders_router.get(
    "/{order_number}",
    response_model=OrderResponse,
    summary="Get order by number",
    description="Returns an order's status and totals for the thank-you page.",
)
async def get_order(
    order_number: str,
    order_service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Get a single order by its order number.

    Args:
        order_number: Human-facing order number.
        order_service: Order service.

    Returns:
        OrderResponse: The order data.

    Raises:
        OrderNotFoundError: If no order has this number.
    """
    order = await order_service.get_order_by_number(order_number)
    if not order:
        raise OrderNotFoundError()
    return OrderResponse.from_order(order)
