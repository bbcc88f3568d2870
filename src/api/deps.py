"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.error_handler import AuthenticationError
from src.services.order_service import OrderService
from src.services.payment_service import PaymentService


def get_order_service() -> OrderService:
    """Order service bound to the configured store."""
    return OrderService()


def get_payment_service() -> PaymentService:
    """Payment service bound to the configured store."""
    return PaymentService()


async def get_customer_id(
    x_user_id: Annotated[str | None, Header(description="Customer id set by the auth gateway")] = None,
) -> str | None:
    """Customer id forwarded by the upstream auth gateway, None for guests."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


async def require_admin_actor(
    x_actor_id: Annotated[str | None, Header(description="Admin identity set by the auth gateway")] = None,
) -> str:
    """Admin identity forwarded by the upstream auth gateway.

    Raises:
        AuthenticationError: If the header is missing or blank.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise AuthenticationError("Admin authentication required")
    return x_actor_id.strip()


# Type aliases for cleaner route signatures
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
CustomerId = Annotated[str | None, Depends(get_customer_id)]
AdminActor = Annotated[str, Depends(require_admin_actor)]
