"""Order model type definitions for database operations."""

from typing import Any, Literal, TypedDict

# Order status enum values matching database values
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded"]

OrderPaymentStatus = Literal["pending", "paid", "failed", "refunded"]

FulfillmentStatus = Literal["unfulfilled", "partially_fulfilled", "fulfilled"]

ShipmentStatus = Literal["pending", "in_transit", "delivered", "failed"]

PaymentEventType = Literal["payment_completed", "payment_failed", "refund_processed"]


class Order(TypedDict):
    """Order table row representation.

    Monetary fields are integer minor currency units. Invariant:
    total_amount == subtotal + shipping_cost + tax_amount - discount_amount.
    """

    id: str
    order_number: str
    user_id: str | None
    email: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    fulfillment_status: FulfillmentStatus
    subtotal: int
    shipping_cost: int
    tax_amount: int
    discount_amount: int
    total_amount: int
    currency: str
    customer_note: str | None
    created_at: str
    updated_at: str
    paid_at: str | None
    shipped_at: str | None
    delivered_at: str | None
    cancelled_at: str | None


class OrderItem(TypedDict):
    """Order line snapshot. Invariant: subtotal == unit_price * quantity."""

    id: str
    order_id: str
    product_id: str
    variant_id: str | None
    product_name: str
    variant_name: str | None
    sku: str | None
    unit_price: int
    quantity: int
    subtotal: int
    product_snapshot: dict[str, Any]
    created_at: str


class Address(TypedDict):
    """Shipping or billing address row. Both tables share this shape."""

    id: str
    order_id: str
    first_name: str
    last_name: str
    company: str | None
    address_line1: str
    address_line2: str | None
    city: str
    province: str
    postal_code: str
    country: str
    phone: str
    created_at: str


class Shipment(TypedDict):
    """Shipment row created alongside the order; carrier fields filled later."""

    id: str
    order_id: str
    shipping_method: str
    status: ShipmentStatus
    carrier: str | None
    tracking_number: str | None
    tracking_url: str | None
    created_at: str
    shipped_at: str | None
    estimated_delivery_at: str | None
    delivered_at: str | None


class OrderStatusHistory(TypedDict):
    """Append-only status log row."""

    id: str
    order_id: str
    status: OrderStatus
    note: str | None
    changed_by: str | None
    created_at: str


class OrderGift(TypedDict):
    """Immutable snapshot of a complimentary gift granted at order creation."""

    id: str
    order_id: str
    gift_id: str | None
    gift_name: str
    gift_description: str | None
    gift_image_url: str | None
    gift_value: int | None
    created_at: str


class DiscountCodeUsage(TypedDict):
    """One row per order that applied a discount code."""

    id: str
    discount_code_id: str
    order_id: str
    user_id: str | None
    discount_amount: int
    created_at: str


class OrderDetail(Order, total=False):
    """Order row with its child rows attached."""

    items: list[OrderItem]
    shipping_address: Address | None
    billing_address: Address | None
    shipment: Shipment | None
    gifts: list[OrderGift]


class PaymentEvent(TypedDict, total=False):
    """Payment outcome applied to the order state machine."""

    type: PaymentEventType
    order_id: str
    timestamp: str
    metadata: dict[str, Any]
