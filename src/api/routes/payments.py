"""Payment API routes: PromptPay QR, hosted card payments and admin settlement."""

from typing import Annotated

from fastapi import APIRouter, Query, Request, status

from src.api.deps import AdminActor, PaymentServiceDep
from src.schemas.payment import (
    CardPaymentInitiate,
    CardPaymentResponse,
    ManualVerificationRequest,
    PaymentActionResponse,
    PaymentListResponse,
    PaymentStatusResponse,
    PromptPayPaymentCreate,
    PromptPayPaymentResponse,
    RefundRequest,
)

router = APIRouter(prefix="/payments", tags=["payments"])
admin_router = APIRouter(prefix="/admin/payments", tags=["admin-payments"])


@router.post(
    "/promptpay",
    response_model=PromptPayPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a PromptPay payment",
    description="Creates a pending payment and returns the EMV payload to render as a QR code.",
)
async def create_promptpay_payment(
    data: PromptPayPaymentCreate,
    service: PaymentServiceDep,
) -> PromptPayPaymentResponse:
    """Create a PromptPay QR payment for an order.

    Raises:
        ValidationError: 422 if the amount does not match the order total or
            the order cannot be paid.
        NotFoundError: 404 if the order does not exist.
        PaymentGatewayError: 502 if PromptPay is not configured.
    """
    result = await service.create_promptpay_payment(data.order_id, data.amount)
    return PromptPayPaymentResponse(**result)


@router.post(
    "/card/initiate",
    response_model=CardPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a card payment",
    description="Creates a pending payment and a hosted payment page session. Redirect the customer to payment_url.",
)
async def initiate_card_payment(
    data: CardPaymentInitiate,
    service: PaymentServiceDep,
) -> CardPaymentResponse:
    result = await service.initiate_card_payment(data.order_id, data.amount, data.return_url)
    return CardPaymentResponse(**result)


@router.get(
    "/card/return",
    response_model=PaymentStatusResponse,
    summary="Card payment return",
    description="Landing point after the hosted payment page. Reports the stored payment state without changing it.",
)
async def card_payment_return(request: Request, service: PaymentServiceDep) -> PaymentStatusResponse:
    result = await service.handle_card_return(dict(request.query_params))
    return PaymentStatusResponse(**result)


@router.get(
    "/{payment_id}/status",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
)
async def get_payment_status(payment_id: str, service: PaymentServiceDep) -> PaymentStatusResponse:
    result = await service.get_payment_status(payment_id)
    return PaymentStatusResponse(**result)


# Admin


@admin_router.get(
    "",
    response_model=PaymentListResponse,
    summary="List payment attempts for an order",
)
async def list_order_payments(
    service: PaymentServiceDep,
    _actor: AdminActor,
    order_id: Annotated[str, Query(min_length=1)],
) -> PaymentListResponse:
    payments = await service.list_order_payments(order_id)
    return PaymentListResponse(
        order_id=order_id,
        payments=[PaymentStatusResponse(**payment) for payment in payments],
    )


@admin_router.post(
    "/{payment_id}/verify",
    response_model=PaymentActionResponse,
    summary="Manually verify a payment",
)
async def verify_payment(
    payment_id: str,
    data: ManualVerificationRequest,
    service: PaymentServiceDep,
    actor: AdminActor,
) -> PaymentActionResponse:
    """Mark a payment confirmed out of band as completed.

    Raises:
        ValidationError: 422 if the payment is already completed or refunded.
        NotFoundError: 404 if the payment does not exist.
    """
    result = await service.manually_verify_payment(payment_id, actor, note=data.note)
    return PaymentActionResponse(**result)


@admin_router.post(
    "/{payment_id}/refund",
    response_model=PaymentActionResponse,
    summary="Refund a payment",
)
async def refund_payment(
    payment_id: str,
    data: RefundRequest,
    service: PaymentServiceDep,
    actor: AdminActor,
) -> PaymentActionResponse:
    """Record a refund for a completed payment and move the order to refunded.

    Raises:
        ValidationError: 422 if the payment is not completed.
        NotFoundError: 404 if the payment does not exist.
    """
    result = await service.process_refund(payment_id, data.reason, admin_id=actor)
    return PaymentActionResponse(**result)
