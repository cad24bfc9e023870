"""Global error handling middleware and the application's error taxonomy."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


# Not found


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ProductNotFoundError(NotFoundError):
    """Product is absent or not purchasable."""

    def __init__(self, message: str = "Product not found") -> None:
        super().__init__(message=message)


class OrderNotFoundError(NotFoundError):
    """Order is absent."""

    def __init__(self, message: str = "Order not found") -> None:
        super().__init__(message=message)


# Invalid input


class InvalidInputError(APIError):
    """Request data failed business validation."""

    def __init__(
        self,
        message: str = "Invalid input",
        details: list[dict[str, Any]] | None = None,
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            error_type="invalid_input",
            details=details,
        )


class InvalidQuantityError(InvalidInputError):
    """Quantity is not a positive integer within the allowed range."""

    def __init__(self, message: str = "Quantity must be a positive whole number") -> None:
        super().__init__(message=message, details=[{"loc": ["quantity"], "msg": message, "type": "invalid_quantity"}])


class InvalidPaymentAmountError(InvalidInputError):
    """Computed charge amount is zero or negative."""

    def __init__(self, message: str = "Invalid product price.") -> None:
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST)


# Authentication


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
        )


class WebhookSignatureError(APIError):
    """Webhook signature is missing or does not match the payload."""

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="authentication_failure",
        )


# Webhook payload problems


class MalformedEventError(APIError):
    """Webhook payload is not a usable provider event."""

    def __init__(self, message: str = "Malformed webhook payload") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="malformed_event",
        )


class CorrelationError(APIError):
    """Payment event cannot be matched to exactly one order."""

    def __init__(self, message: str = "Payment event has no order correlation metadata") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="correlation_error",
        )


class PaymentMismatchError(APIError):
    """Amount or currency reported by the provider disagrees with the order."""

    def __init__(self, message: str = "Payment amount does not match order total") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="payment_mismatch",
        )


class OrderNotYetAvailableError(APIError):
    """Correlated order is not visible yet; the provider should redeliver."""

    def __init__(self, message: str = "Order not available yet") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="order_not_available",
        )


# Conflicts


class ConflictError(APIError):
    """Request conflicts with the current state of a resource."""

    def __init__(self, message: str = "Conflict", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type="conflict",
            details=details,
        )


class OrderStateConflictError(ConflictError):
    """Order is no longer awaiting payment."""


class InventoryConflictError(ConflictError):
    """Inventory kept changing underneath a compare-and-set decrement."""


# Payment provider


class PaymentProviderUnavailableError(APIError):
    """Payment provider is misconfigured or unreachable."""

    def __init__(
        self,
        message: str = "Payment provider unavailable",
        details: list[dict[str, Any]] | None = None,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        error_type: str = "provider_unavailable",
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            error_type=error_type,
            details=details,
        )


class PaymentProviderTimeoutError(PaymentProviderUnavailableError):
    """Payment provider did not answer within the configured timeout."""

    def __init__(self, message: str = "Payment provider timed out", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            details=details,
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_type="provider_timeout",
        )


class PaymentProviderRejectedError(PaymentProviderUnavailableError):
    """Payment provider refused the request."""

    def __init__(self, message: str = "Payment provider rejected the request", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            details=details,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_type="provider_rejected",
        )


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except APIError as e:
        if e.status_code >= 500:
            logger.error(
                "API error: %s - %s",
                e.error_type,
                e.message,
                extra={"request_id": request_id, "status_code": e.status_code},
            )
        else:
            logger.warning(
                "API error: %s - %s",
                e.error_type,
                e.message,
                extra={"request_id": request_id, "status_code": e.status_code},
            )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures in the standard error format.

    Args:
        request: The rejected request.
        exc: Validation error raised by FastAPI.

    Returns:
        JSONResponse: 422 ``invalid_input`` error response.
    """
    request_id = request.headers.get("X-Request-ID")
    details = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "value_error")),
        }
        for error in exc.errors()
    ]
    logger.warning(
        "Request validation failed on %s: %s",
        request.url.path,
        "; ".join(f"{'.'.join(d['loc'])}: {d['msg']}" for d in details),
        extra={"request_id": request_id},
    )
    return create_error_response(
        error_type="invalid_input",
        message="Invalid input",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details=details,
        request_id=request_id,
    )
