"""Inventory ledger: the only writer of variant stock.

Stock is decremented exclusively through the store's conditional decrement
(`stock_quantity >= quantity`), inside the unit of work that creates the
order. No lock is taken here; the conditional write is the guard.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from src.api.middleware.error_handler import InsufficientStockError
from src.repositories.base import StockLedger

if TYPE_CHECKING:
    from src.services.pricing_service import PricedLine

logger = logging.getLogger(__name__)


def reserve(stock: StockLedger, variant_id: str, quantity: int) -> None:
    """Decrement a variant's stock if enough is available.

    Raises:
        ValueError: If quantity is not positive.
        InsufficientStockError: If no row was affected. The caller's unit of
            work must then roll back.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    if not stock.decrement_stock_if_available(variant_id, quantity):
        logger.info("Stock reservation failed: variant=%s quantity=%d", variant_id, quantity)
        raise InsufficientStockError(
            f"Insufficient stock for variant {variant_id}",
            variant_id=variant_id,
            requested=quantity,
        )


def record_sale(stock: StockLedger, product_id: str, quantity: int) -> None:
    """Increment a product's sold count. Sold counts only ever grow."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    stock.increment_sold_count(product_id, quantity)


def check_available(
    name: str,
    variant_id: str,
    available: int | None,
    requested: int,
) -> None:
    """Pre-transaction shortfall check with a customer-facing message.

    The authoritative check is the conditional decrement in reserve().

    Raises:
        InsufficientStockError: If requested exceeds available.
    """
    available = available or 0
    if requested > available:
        raise InsufficientStockError(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}",
            variant_id=variant_id,
            available=available,
            requested=requested,
        )


def reservations_for(lines: Iterable["PricedLine"]) -> list[tuple[str, int]]:
    """Variant quantities to reserve, merged per variant, for lines that track inventory."""
    totals: dict[str, int] = {}
    for line in lines:
        if line.variant_id and line.track_inventory:
            totals[line.variant_id] = totals.get(line.variant_id, 0) + line.quantity
    return list(totals.items())
