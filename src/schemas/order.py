"""Order Pydantic schemas for API request/response models.

All monetary fields are integer minor currency units.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from src.schemas.common import PaginationMeta

OrderStatusValue = Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded"]


class OrderItemInput(BaseModel):
    """A cart line. Any client-side price is ignored."""

    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(description="Product ID")
    variant_id: str | None = Field(default=None, description="Variant ID, if the product has variants")
    quantity: int = Field(ge=1, le=1000, description="Quantity ordered")


class AddressInput(BaseModel):
    """Shipping or billing address.

    Required fields are checked by the order service so that every missing
    field is reported with its location.
    """

    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    company: str | None = Field(default=None, max_length=255)
    address_line1: str = Field(default="", max_length=500)
    address_line2: str | None = Field(default=None, max_length=500)
    city: str = Field(default="", max_length=100)
    province: str = Field(default="", max_length=100)
    postal_code: str = Field(default="", max_length=20)
    country: str = Field(default="", max_length=100)
    phone: str = Field(default="", max_length=50)


class OrderQuoteRequest(BaseModel):
    """Schema for POST /orders/quote."""

    items: list[OrderItemInput] = Field(min_length=1, description="Cart lines")
    discount_code: str | None = Field(default=None, max_length=50)
    shipping_method: str | None = Field(default=None, description="Shipping method ID")


class OrderCreate(OrderQuoteRequest):
    """Schema for POST /orders."""

    email: EmailStr = Field(description="Customer email")
    shipping_address: AddressInput
    billing_address: AddressInput
    customer_note: str | None = Field(default=None, max_length=2000)


class OrderStatusUpdate(BaseModel):
    """Schema for POST /admin/orders/{id}/status."""

    status: str = Field(description="Target order status")
    note: str | None = Field(default=None, max_length=2000)


class ShippingMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    cost: int
    estimated_days: int
    carrier: str | None = None


class PricedLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    variant_id: str | None = None
    product_name: str
    variant_name: str | None = None
    unit_price: int
    quantity: int
    subtotal: int


class AppliedDiscountResponse(BaseModel):
    code: str
    type: str
    value: int
    amount: int


class GiftResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    image_url: str | None = None
    value: int | None = None


class OrderQuoteResponse(BaseModel):
    """Pricing preview; nothing is written."""

    items: list[PricedLineResponse]
    subtotal: int
    shipping_cost: int
    tax_amount: int
    discount_amount: int
    total_amount: int
    currency: str
    shipping_method: str
    discount: AppliedDiscountResponse | None = None
    gifts: list[GiftResponse] = Field(default_factory=list)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str | None = None
    variant_id: str | None = None
    product_name: str
    variant_name: str | None = None
    sku: str | None = None
    unit_price: int
    quantity: int
    subtotal: int
    product_snapshot: dict[str, Any] | None = None


class AddressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    first_name: str
    last_name: str
    company: str | None = None
    address_line1: str
    address_line2: str | None = None
    city: str
    province: str
    postal_code: str
    country: str
    phone: str


class ShipmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    shipping_method: str
    status: str
    carrier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None


class OrderGiftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gift_name: str
    gift_description: str | None = None
    gift_image_url: str | None = None
    gift_value: int | None = None


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Order unique identifier")
    order_number: str
    user_id: str | None = None
    email: str
    status: OrderStatusValue
    payment_status: str
    fulfillment_status: str
    subtotal: int
    shipping_cost: int
    tax_amount: int
    discount_amount: int
    total_amount: int
    currency: str
    customer_note: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None


class OrderDetailResponse(OrderResponse):
    """Order with child rows attached."""

    items: list[OrderItemResponse] = Field(default_factory=list)
    shipping_address: AddressResponse | None = None
    billing_address: AddressResponse | None = None
    shipment: ShipmentResponse | None = None
    gifts: list[OrderGiftResponse] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    """Schema for paginated order lists."""

    items: list[OrderResponse]
    pagination: PaginationMeta


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: OrderStatusValue
    note: str | None = None
    changed_by: str | None = None
    created_at: datetime


class StatusHistoryResponse(BaseModel):
    order_id: str
    history: list[StatusHistoryEntry]


class OrderStatusChangeResponse(BaseModel):
    order_id: str
    previous_status: OrderStatusValue
    status: OrderStatusValue


class ValidNextStatusesResponse(BaseModel):
    order_id: str
    current_status: OrderStatusValue
    valid_next_statuses: list[OrderStatusValue]
    is_terminal: bool
