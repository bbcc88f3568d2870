"""Order API routes: quoting, checkout, order lookup and admin status management."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from src.api.deps import AdminActor, CustomerId, OrderServiceDep
from src.core.config import get_settings
from src.core.shipping import get_all_shipping_methods
from src.schemas.common import PaginationMeta
from src.schemas.order import (
    AppliedDiscountResponse,
    GiftResponse,
    OrderCreate,
    OrderDetailResponse,
    OrderListResponse,
    OrderQuoteRequest,
    OrderQuoteResponse,
    OrderResponse,
    OrderStatusChangeResponse,
    OrderStatusUpdate,
    PricedLineResponse,
    ShippingMethodResponse,
    StatusHistoryEntry,
    StatusHistoryResponse,
    ValidNextStatusesResponse,
)
from src.services.order_state_machine import order_status_state_machine
from src.services.pricing_service import PricingResult

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin-orders"])


def _quote_response(result: PricingResult) -> OrderQuoteResponse:
    discount = None
    if result.discount is not None:
        discount = AppliedDiscountResponse(
            code=result.discount["code"],
            type=result.discount["discount_type"],
            value=result.discount["discount_value"],
            amount=result.discount_amount,
        )

    return OrderQuoteResponse(
        items=[
            PricedLineResponse(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                variant_name=line.variant_name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                subtotal=line.subtotal,
            )
            for line in result.lines
        ],
        subtotal=result.subtotal,
        shipping_cost=result.shipping_cost,
        tax_amount=result.tax_amount,
        discount_amount=result.discount_amount,
        total_amount=result.total_amount,
        currency=get_settings().currency,
        shipping_method=result.shipping_method.id,
        discount=discount,
        gifts=[GiftResponse.model_validate(gift) for gift in result.gifts],
    )


@router.get(
    "/shipping-methods",
    response_model=list[ShippingMethodResponse],
    summary="List shipping methods",
)
async def list_shipping_methods() -> list[ShippingMethodResponse]:
    """Available flat-rate shipping methods. Costs are in minor units."""
    return [ShippingMethodResponse.model_validate(method) for method in get_all_shipping_methods()]


@router.post(
    "/quote",
    response_model=OrderQuoteResponse,
    summary="Price a cart",
    description="Computes subtotal, shipping, tax, discount and gifts for a cart without creating an order.",
)
async def quote_order(
    data: OrderQuoteRequest,
    service: OrderServiceDep,
    user_id: CustomerId,
) -> OrderQuoteResponse:
    result = await service.quote_order(data, user_id=user_id)
    return _quote_response(result)


@router.post(
    "",
    response_model=OrderDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Creates a pending order, reserving stock and recording discount usage atomically.",
)
async def create_order(
    data: OrderCreate,
    service: OrderServiceDep,
    user_id: CustomerId,
) -> OrderDetailResponse:
    """Create an order from a cart.

    Prices are always taken from the catalog. Guests may check out without
    a customer id.

    Raises:
        ValidationError: 422 for incomplete addresses, unknown shipping method
            or a rejected discount code.
        NotFoundError: 404 for a missing product or variant.
        InsufficientStockError: 409 when stock runs out.
    """
    order = await service.create_order(data, user_id=user_id)
    return OrderDetailResponse.model_validate(order)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get an order",
)
async def get_order(order_id: str, service: OrderServiceDep) -> OrderDetailResponse:
    order = await service.get_order(order_id)
    return OrderDetailResponse.model_validate(order)


@router.get(
    "/{order_id}/status-history",
    response_model=StatusHistoryResponse,
    summary="Get order status history",
    description="Status history entries, most recent first.",
)
async def get_order_status_history(order_id: str, service: OrderServiceDep) -> StatusHistoryResponse:
    history = await service.get_status_history(order_id)
    return StatusHistoryResponse(
        order_id=order_id,
        history=[StatusHistoryEntry.model_validate(entry) for entry in history],
    )


# Admin


@admin_router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
)
async def list_orders(
    service: OrderServiceDep,
    _actor: AdminActor,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    search: Annotated[str | None, Query(max_length=100)] = None,
) -> OrderListResponse:
    """List orders newest first, filtered by status or by order number/email."""
    orders, total = await service.list_orders(page=page, limit=limit, status=status_filter, search=search)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        pagination=PaginationMeta(page=page, limit=limit, total=total),
    )


@admin_router.post(
    "/{order_id}/status",
    response_model=OrderStatusChangeResponse,
    summary="Change order status",
)
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    service: OrderServiceDep,
    actor: AdminActor,
) -> OrderStatusChangeResponse:
    """Move an order along the status lifecycle.

    Raises:
        InvalidStatusTransitionError: 422 with the reason the move is not allowed.
        NotFoundError: 404 if the order does not exist.
    """
    result = await service.update_order_status(order_id, data.status, note=data.note, actor=actor)
    return OrderStatusChangeResponse(**result)


@admin_router.get(
    "/{order_id}/valid-next-statuses",
    response_model=ValidNextStatusesResponse,
    summary="List statuses an order can move to",
)
async def get_valid_next_statuses(
    order_id: str,
    service: OrderServiceDep,
    _actor: AdminActor,
) -> ValidNextStatusesResponse:
    current, next_statuses = await service.get_valid_next_statuses(order_id)
    return ValidNextStatusesResponse(
        order_id=order_id,
        current_status=current,
        valid_next_statuses=next_statuses,
        is_terminal=order_status_state_machine.is_terminal(current),
    )
