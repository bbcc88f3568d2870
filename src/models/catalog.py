"""Catalog row shapes read by the order engine.

The catalog subsystem owns these tables. The order engine only reads them,
decrements variant stock and increments product sold counts.
"""

from typing import Literal, TypedDict

ProductStatus = Literal["draft", "active", "archived"]

DiscountType = Literal["percentage", "fixed_amount", "free_shipping"]


class Product(TypedDict):
    """Products table row (fields used here)."""

    id: str
    name: str
    description: str | None
    base_price: int
    status: ProductStatus
    track_inventory: bool
    sold_count: int
    category_ids: list[str]
    deleted_at: str | None


class ProductVariant(TypedDict):
    """Product variants table row (fields used here)."""

    id: str
    product_id: str
    name: str
    sku: str | None
    price: int
    stock_quantity: int
    is_active: bool


class DiscountCode(TypedDict):
    """Discount codes table row."""

    id: str
    code: str
    title: str
    discount_type: DiscountType
    discount_value: int
    min_purchase_amount: int | None
    max_discount_amount: int | None
    usage_limit: int | None
    usage_limit_per_customer: int | None
    applicable_to_products: list[str] | None
    applicable_to_categories: list[str] | None
    is_active: bool
    starts_at: str | None
    expires_at: str | None


class ComplimentaryGift(TypedDict):
    """Complimentary gifts table row with its associated product ids."""

    id: str
    name: str
    description: str | None
    image_url: str | None
    value: int | None
    min_purchase_amount: int | None
    is_active: bool
    product_ids: list[str]
