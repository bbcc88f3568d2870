"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
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


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ValidationError(APIError):
    """Request validation error."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="validation_error",
            details=details,
        )

    @classmethod
    def for_field(cls, loc: list[str], message: str, error_type: str = "value_error") -> "ValidationError":
        """Build a validation error pointing at a single field."""
        return cls(message=message, details=[{"loc": loc, "msg": message, "type": error_type}])


class ConflictError(APIError):
    """Write lost a race against a concurrent change."""

    def __init__(
        self,
        message: str = "Conflict",
        error_type: str = "conflict",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type=error_type,
            details=details,
        )


class InsufficientStockError(ConflictError):
    """Stock reservation failed (INSUFFICIENT_STOCK).

    Kept distinct from ValidationError so clients can offer a
    "reduce quantity" path.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        message: str,
        variant_id: str | None = None,
        available: int | None = None,
        requested: int | None = None,
    ) -> None:
        self.variant_id = variant_id
        self.available = available
        self.requested = requested
        detail: dict[str, Any] = {"loc": ["items"], "msg": message, "type": self.code}
        if variant_id is not None:
            detail["loc"] = ["items", variant_id]
        super().__init__(message=message, error_type="insufficient_stock", details=[detail])


class InvalidStatusTransitionError(APIError):
    """Order state machine rejected a transition (INVALID_STATUS_TRANSITION)."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, message: str, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="invalid_status_transition",
            details=[{"loc": ["status"], "msg": message, "type": self.code}],
        )


class DiscountCodeError(ValidationError):
    """Discount code failed validation."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(
            message=message,
            details=[{"loc": ["discount_code"], "msg": message, "type": code}],
        )


class WebhookSignatureError(ValidationError):
    """Webhook signature did not verify.

    The message is the same whichever check failed.
    """

    def __init__(self) -> None:
        super().__init__(message="Invalid webhook signature")
        self.status_code = status.HTTP_400_BAD_REQUEST


class PaymentGatewayError(APIError):
    """Upstream payment gateway failed or returned an unusable response."""

    def __init__(self, message: str = "Payment gateway error. Please try again.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_type="payment_gateway_error",
        )


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
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

    Logs full stack traces for unexpected errors while returning safe
    messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except APIError as e:
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
