"""Discount code validation, discount amounts and complimentary gift eligibility."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from src.api.middleware.error_handler import DiscountCodeError
from src.core.money import format_major, percent_of
from src.repositories.base import CatalogRepository
from src.repositories.factory import get_store

if TYPE_CHECKING:
    from src.services.pricing_service import PricedLine

logger = logging.getLogger(__name__)

# Error codes surfaced in DiscountCodeError.code
INVALID_CODE = "INVALID_CODE"
NOT_STARTED = "NOT_STARTED"
EXPIRED = "EXPIRED"
MIN_PURCHASE_NOT_MET = "MIN_PURCHASE_NOT_MET"
USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"


def _parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def applicable_subtotal(discount: dict[str, Any], lines: Sequence["PricedLine"]) -> int:
    """Sum of line subtotals the code applies to.

    A line qualifies when its product is in the product allow-list or one of
    its categories is in the category allow-list. With both lists empty the
    code applies to the whole cart.
    """
    product_ids = set(discount.get("applicable_to_products") or [])
    category_ids = set(discount.get("applicable_to_categories") or [])

    if not product_ids and not category_ids:
        return sum(line.subtotal for line in lines)

    return sum(
        line.subtotal
        for line in lines
        if line.product_id in product_ids or category_ids.intersection(line.category_ids)
    )


def calculate_discount_amount(
    discount: dict[str, Any],
    lines: Sequence["PricedLine"],
    shipping_cost: int,
) -> int:
    """Discount granted by a validated code.

    percentage: half-up rounded share of the applicable subtotal, capped at
    max_discount_amount when set. fixed_amount: the value, capped at the
    applicable subtotal. free_shipping: the shipping cost that would
    otherwise apply.
    """
    discount_type = discount["discount_type"]
    value = discount["discount_value"]

    if discount_type == "free_shipping":
        return shipping_cost

    base = applicable_subtotal(discount, lines)

    if discount_type == "percentage":
        amount = percent_of(base, value)
        cap = discount.get("max_discount_amount")
        if cap is not None:
            amount = min(amount, cap)
        return min(amount, base)

    if discount_type == "fixed_amount":
        return min(value, base)

    logger.warning("Unknown discount type %s on code %s", discount_type, discount.get("code"))
    return 0


def select_eligible_gifts(
    gifts: Iterable[dict[str, Any]],
    subtotal: int,
    product_ids: Iterable[str],
) -> list[dict[str, Any]]:
    """Gifts earned by this cart.

    A gift qualifies when the subtotal reaches its minimum purchase amount or
    any of its associated products is in the cart. Product-associated gifts
    therefore survive a subtotal drop.
    """
    in_cart = set(product_ids)
    eligible = []
    for gift in gifts:
        if not gift.get("is_active", True):
            continue
        minimum = gift.get("min_purchase_amount")
        by_subtotal = minimum is not None and subtotal >= minimum
        by_product = bool(in_cart.intersection(gift.get("product_ids") or []))
        if by_subtotal or by_product:
            eligible.append(gift)
    return eligible


class DiscountService:
    """Validates discount codes and evaluates gift eligibility against the catalog."""

    def __init__(self, catalog: CatalogRepository | None = None) -> None:
        self.catalog = catalog or get_store()

    async def validate_code(
        self,
        code: str,
        subtotal: int,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Validate a discount code for a cart subtotal.

        Checks run in a fixed order and stop at the first failure.

        Args:
            code: Code as typed by the customer (case-insensitive).
            subtotal: Cart subtotal in minor units.
            user_id: Customer id; the per-customer limit is skipped for guests.
            now: Evaluation time, defaults to the current UTC time.

        Returns:
            dict: The discount code row.

        Raises:
            DiscountCodeError: With one of the module's error codes.
        """
        now = now or datetime.now(timezone.utc)
        discount = self.catalog.get_discount_code(code.strip())

        if not discount or not discount.get("is_active"):
            raise DiscountCodeError(INVALID_CODE, "Invalid discount code")

        if discount.get("starts_at") and _parse_timestamp(discount["starts_at"]) > now:
            raise DiscountCodeError(NOT_STARTED, "This discount code is not yet active")

        if discount.get("expires_at") and _parse_timestamp(discount["expires_at"]) <= now:
            raise DiscountCodeError(EXPIRED, "This discount code has expired")

        minimum = discount.get("min_purchase_amount")
        if minimum is not None and subtotal < minimum:
            raise DiscountCodeError(
                MIN_PURCHASE_NOT_MET,
                f"Minimum purchase of {format_major(minimum)} THB required",
            )

        usage_limit = discount.get("usage_limit")
        if usage_limit is not None and self.catalog.count_discount_usage(discount["id"]) >= usage_limit:
            raise DiscountCodeError(USAGE_LIMIT_REACHED, "This discount code has reached its usage limit")

        per_customer = discount.get("usage_limit_per_customer")
        if per_customer is not None and user_id:
            used = self.catalog.count_customer_discount_usage(discount["id"], user_id)
            if used >= per_customer:
                raise DiscountCodeError(
                    USAGE_LIMIT_REACHED,
                    "You have already used this discount code the maximum number of times",
                )

        return discount

    async def get_eligible_gifts(self, subtotal: int, product_ids: Iterable[str]) -> list[dict[str, Any]]:
        """Gifts earned by a cart. Always recomputed from the live gift list."""
        return select_eligible_gifts(self.catalog.list_active_gifts(), subtotal, product_ids)
