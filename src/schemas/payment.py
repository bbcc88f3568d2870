"""Payment Pydantic schemas for API request/response and webhook payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PromptPayPaymentCreate(BaseModel):
    """Schema for POST /payments/promptpay."""

    order_id: str = Field(description="Order to pay")
    amount: int = Field(description="Amount in minor units; must equal the order total")


class PromptPayPaymentResponse(BaseModel):
    payment_id: str
    qr_payload: str = Field(description="EMV payload to render as a QR code")
    amount: int
    currency: str
    expires_at: datetime


class CardPaymentInitiate(BaseModel):
    """Schema for POST /payments/card/initiate."""

    order_id: str = Field(description="Order to pay")
    amount: int = Field(description="Amount in minor units; must equal the order total")
    return_url: str = Field(description="Where the gateway returns the customer")


class CardPaymentResponse(BaseModel):
    payment_id: str
    payment_url: str
    session_id: str


class PaymentStatusResponse(BaseModel):
    """Latest known state of a payment attempt."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    order_id: str
    status: str
    payment_method: str
    amount: int
    currency: str
    transaction_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None


class PaymentListResponse(BaseModel):
    order_id: str
    payments: list[PaymentStatusResponse]


class ManualVerificationRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class RefundRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class PaymentActionResponse(BaseModel):
    payment_id: str
    status: str


class PromptPayWebhookPayload(BaseModel):
    """QR provider notification body."""

    model_config = ConfigDict(extra="allow")

    transactionId: str = Field(min_length=1)
    amount: int | float | str | None = None
    currency: str | None = None
    status: str
    referenceId: str = Field(min_length=1)
    timestamp: str | None = None


class CardWebhookPayload(BaseModel):
    """Card gateway notification body. hash_value covers
    merchant_id + order_id + payment_status + amount + currency."""

    model_config = ConfigDict(extra="allow")

    version: str | None = None
    merchant_id: str
    order_id: str = Field(description="Our payment id, echoed back by the gateway")
    payment_status: str
    transaction_ref: str = Field(min_length=1)
    amount: int | float | str
    currency: str
    hash_value: str
    card_number: str | None = None
    card_brand: str | None = None

