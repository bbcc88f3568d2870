"""Order pricing.

Unit prices always come from the catalog (variant price, else product base
price); a client-supplied price is never read. Totals are integer minor units:

    total_amount = max(0, subtotal + shipping_cost + tax_amount - discount_amount)
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from src.api.middleware.error_handler import NotFoundError, ValidationError
from src.core.config import get_settings
from src.core.money import percent_of
from src.core.shipping import ShippingMethod, get_shipping_method
from src.repositories.base import CatalogRepository
from src.repositories.factory import get_store
from src.schemas.order import OrderItemInput
from src.services.discount_service import DiscountService, calculate_discount_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedLine:
    """A cart line resolved against the catalog."""

    product_id: str
    variant_id: str | None
    product_name: str
    variant_name: str | None
    sku: str | None
    unit_price: int
    quantity: int
    category_ids: tuple[str, ...]
    track_inventory: bool
    available_stock: int | None
    product_snapshot: dict[str, Any]

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class PricingResult:
    """Totals for a priced cart."""

    lines: list[PricedLine]
    shipping_method: ShippingMethod
    subtotal: int
    shipping_cost: int
    tax_amount: int
    discount_amount: int
    total_amount: int
    discount: dict[str, Any] | None = None
    gifts: list[dict[str, Any]] = field(default_factory=list)


def resolve_shipping_method(method_id: str | None) -> ShippingMethod:
    """Look up a shipping method, falling back to the configured default.

    Raises:
        ValidationError: If an explicit method id is unknown.
    """
    settings = get_settings()
    method = get_shipping_method(method_id or settings.default_shipping_method)
    if method is None:
        raise ValidationError.for_field(["shipping_method"], f"Unknown shipping method: {method_id}")
    return method


def calculate_shipping_cost(method: ShippingMethod, subtotal: int) -> int:
    """Flat method cost, free at or above the free-shipping threshold."""
    if subtotal >= get_settings().free_shipping_threshold:
        return 0
    return method.cost


def calculate_totals(
    lines: Sequence[PricedLine],
    shipping_method: ShippingMethod,
    discount: dict[str, Any] | None = None,
) -> PricingResult:
    """Price resolved lines. Pure; discount must already be validated."""
    settings = get_settings()

    subtotal = sum(line.subtotal for line in lines)
    shipping_cost = calculate_shipping_cost(shipping_method, subtotal)
    tax_amount = percent_of(subtotal + shipping_cost, settings.tax_rate_percent)

    discount_amount = 0
    if discount is not None:
        discount_amount = calculate_discount_amount(discount, lines, shipping_cost)

    total_amount = max(0, subtotal + shipping_cost + tax_amount - discount_amount)

    return PricingResult(
        lines=list(lines),
        shipping_method=shipping_method,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total_amount=total_amount,
        discount=discount,
    )


class PricingService:
    """Resolves cart lines against the catalog and prices them."""

    def __init__(
        self,
        catalog: CatalogRepository | None = None,
        discount_service: DiscountService | None = None,
    ) -> None:
        self.catalog = catalog or get_store()
        self.discount_service = discount_service or DiscountService(self.catalog)

    async def resolve_line(self, index: int, item: OrderItemInput) -> PricedLine:
        """Resolve one cart line.

        Raises:
            NotFoundError: If the product is missing, deleted or inactive, or
                the variant is missing, inactive or belongs to another product.
        """
        product = self.catalog.get_product(item.product_id)
        if not product or product.get("deleted_at") or product.get("status") != "active":
            raise NotFoundError(
                f"Product {item.product_id} not found or not available",
                details=[{"loc": ["items", str(index), "product_id"], "msg": "Product not found", "type": "not_found"}],
            )

        snapshot: dict[str, Any] = {
            "name": product["name"],
            "description": product.get("description"),
            "base_price": product["base_price"],
        }

        variant = None
        if item.variant_id:
            variant = self.catalog.get_variant(item.variant_id)
            if not variant or not variant.get("is_active") or variant.get("product_id") != product["id"]:
                raise NotFoundError(
                    f"Variant {item.variant_id} not found or not available",
                    details=[{"loc": ["items", str(index), "variant_id"], "msg": "Variant not found", "type": "not_found"}],
                )
            snapshot["variant"] = {"name": variant["name"], "price": variant["price"], "sku": variant.get("sku")}

        unit_price = variant["price"] if variant and variant.get("price") is not None else product["base_price"]

        return PricedLine(
            product_id=product["id"],
            variant_id=variant["id"] if variant else None,
            product_name=product["name"],
            variant_name=variant["name"] if variant else None,
            sku=variant.get("sku") if variant else None,
            unit_price=unit_price,
            quantity=item.quantity,
            category_ids=tuple(product.get("category_ids") or ()),
            track_inventory=bool(product.get("track_inventory", True)),
            available_stock=variant.get("stock_quantity") if variant else None,
            product_snapshot=snapshot,
        )

    async def resolve_lines(self, items: Sequence[OrderItemInput]) -> list[PricedLine]:
        if not items:
            raise ValidationError.for_field(["items"], "Order must contain at least one item")
        return [await self.resolve_line(index, item) for index, item in enumerate(items)]

    async def price(
        self,
        lines: Sequence[PricedLine],
        discount_code: str | None = None,
        shipping_method_id: str | None = None,
        user_id: str | None = None,
    ) -> PricingResult:
        """Price resolved lines, validating the discount code and collecting gifts.

        Raises:
            ValidationError: Unknown shipping method.
            DiscountCodeError: The discount code failed validation.
        """
        method = resolve_shipping_method(shipping_method_id)
        subtotal = sum(line.subtotal for line in lines)

        discount = None
        if discount_code and discount_code.strip():
            discount = await self.discount_service.validate_code(discount_code, subtotal, user_id)

        result = calculate_totals(lines, method, discount)
        result.gifts = await self.discount_service.get_eligible_gifts(
            result.subtotal, [line.product_id for line in lines]
        )
        return result

    async def quote(
        self,
        items: Sequence[OrderItemInput],
        discount_code: str | None = None,
        shipping_method_id: str | None = None,
        user_id: str | None = None,
    ) -> PricingResult:
        """Price a cart without writing anything."""
        lines = await self.resolve_lines(items)
        return await self.price(lines, discount_code, shipping_method_id, user_id)
