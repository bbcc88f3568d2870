"""Payment model type definitions for database operations."""

from typing import Any, Literal, TypedDict

PaymentStatus = Literal["pending", "completed", "failed", "refunded"]

PaymentMethod = Literal["promptpay", "credit_card"]

PaymentProvider = Literal["promptpay", "card_gateway"]


class Payment(TypedDict):
    """Payment attempt row.

    A retry creates a new row; failed rows are kept for audit. Once set,
    transaction_id is the idempotency key for webhook deliveries.
    """

    id: str
    order_id: str
    payment_method: PaymentMethod
    payment_provider: PaymentProvider
    amount: int
    currency: str
    status: PaymentStatus
    transaction_id: str | None
    card_last4: str | None
    card_brand: str | None
    provider_response: dict[str, Any] | None
    created_at: str
    updated_at: str
    completed_at: str | None
    failed_at: str | None


class PaymentUpdate(TypedDict, total=False):
    """Fields that may change on a payment row."""

    status: PaymentStatus
    transaction_id: str
    card_last4: str | None
    card_brand: str | None
    provider_response: dict[str, Any]
    updated_at: str
    completed_at: str
    failed_at: str


class WebhookDeadLetter(TypedDict):
    """Webhook delivery whose internal processing raised."""

    id: str
    provider: PaymentProvider
    payload: dict[str, Any] | None
    raw_body: str | None
    error: str
    created_at: str
