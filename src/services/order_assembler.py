"""Builds the rows of a new order and commits them as one unit of work.

The order row, its items, both addresses, the shipment, gift snapshots, the
discount usage row, the initial history row and every stock reservation are
written together. Any failure, including a stock shortfall discovered by the
conditional decrement, rolls all of them back.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from src.repositories.base import OrderRepository
from src.schemas.order import AddressInput
from src.services import inventory_ledger
from src.services.pricing_service import PricingResult

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase

ORDER_CREATED_NOTE = "Order created"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """ORD-<base36 millisecond timestamp>-<4 random base36 chars>."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(4))
    return f"ORD-{timestamp}-{suffix}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class OrderGraph:
    """Every row created with a new order, plus the stock it reserves."""

    order: dict[str, Any]
    items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    shipment: dict[str, Any]
    gifts: list[dict[str, Any]]
    discount_usage: dict[str, Any] | None
    history: dict[str, Any]
    reservations: list[tuple[str, int]] = field(default_factory=list)
    sales: list[tuple[str, int]] = field(default_factory=list)

    def as_detail(self) -> dict[str, Any]:
        """The order row with its children attached, as returned to callers."""
        return {
            **self.order,
            "items": self.items,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "shipment": self.shipment,
            "gifts": self.gifts,
        }


def _address_row(order_id: str, address: AddressInput, created_at: str) -> dict[str, Any]:
    return {
        "id": str(uuid4()),
        "order_id": order_id,
        **{key: (value.strip() if isinstance(value, str) else value) for key, value in address.model_dump().items()},
        "created_at": created_at,
    }


def build_order_graph(
    *,
    email: str,
    user_id: str | None,
    shipping_address: AddressInput,
    billing_address: AddressInput,
    pricing: PricingResult,
    currency: str,
    customer_note: str | None = None,
) -> OrderGraph:
    """Assemble the rows for a new order from validated input and its pricing."""
    now = utc_now_iso()
    order_id = str(uuid4())

    order = {
        "id": order_id,
        "order_number": generate_order_number(),
        "user_id": user_id,
        "email": email,
        "status": "pending",
        "payment_status": "pending",
        "fulfillment_status": "unfulfilled",
        "subtotal": pricing.subtotal,
        "shipping_cost": pricing.shipping_cost,
        "tax_amount": pricing.tax_amount,
        "discount_amount": pricing.discount_amount,
        "total_amount": pricing.total_amount,
        "currency": currency,
        "customer_note": customer_note,
        "created_at": now,
        "updated_at": now,
        "paid_at": None,
        "shipped_at": None,
        "delivered_at": None,
        "cancelled_at": None,
    }

    items = [
        {
            "id": str(uuid4()),
            "order_id": order_id,
            "product_id": line.product_id,
            "variant_id": line.variant_id,
            "product_name": line.product_name,
            "variant_name": line.variant_name,
            "sku": line.sku,
            "unit_price": line.unit_price,
            "quantity": line.quantity,
            "subtotal": line.subtotal,
            "product_snapshot": line.product_snapshot,
            "created_at": now,
        }
        for line in pricing.lines
    ]

    shipment = {
        "id": str(uuid4()),
        "order_id": order_id,
        "shipping_method": pricing.shipping_method.id,
        "status": "pending",
        "carrier": None,
        "tracking_number": None,
        "tracking_url": None,
        "created_at": now,
        "shipped_at": None,
        "estimated_delivery_at": None,
        "delivered_at": None,
    }

    gifts = [
        {
            "id": str(uuid4()),
            "order_id": order_id,
            "gift_id": gift["id"],
            "gift_name": gift["name"],
            "gift_description": gift.get("description"),
            "gift_image_url": gift.get("image_url"),
            "gift_value": gift.get("value"),
            "created_at": now,
        }
        for gift in pricing.gifts
    ]

    discount_usage = None
    if pricing.discount is not None:
        discount_usage = {
            "id": str(uuid4()),
            "discount_code_id": pricing.discount["id"],
            "order_id": order_id,
            "user_id": user_id,
            "discount_amount": pricing.discount_amount,
            "created_at": now,
        }

    history = {
        "id": str(uuid4()),
        "order_id": order_id,
        "status": "pending",
        "note": ORDER_CREATED_NOTE,
        "changed_by": "system",
        "created_at": now,
    }

    sold: dict[str, int] = {}
    for line in pricing.lines:
        sold[line.product_id] = sold.get(line.product_id, 0) + line.quantity

    return OrderGraph(
        order=order,
        items=items,
        shipping_address=_address_row(order_id, shipping_address, now),
        billing_address=_address_row(order_id, billing_address, now),
        shipment=shipment,
        gifts=gifts,
        discount_usage=discount_usage,
        history=history,
        reservations=inventory_ledger.reservations_for(pricing.lines),
        sales=list(sold.items()),
    )


def persist_order_graph(store: OrderRepository, graph: OrderGraph) -> None:
    """Write an order graph in one unit of work.

    Raises:
        InsufficientStockError: A reservation found too little stock.
        ConflictError: A uniqueness guard failed (e.g. order number).
    """
    with store.unit_of_work() as uow:
        uow.insert("orders", graph.order)
        for row in graph.items:
            uow.insert("order_items", row)
        for variant_id, quantity in graph.reservations:
            inventory_ledger.reserve(uow, variant_id, quantity)
        for product_id, quantity in graph.sales:
            inventory_ledger.record_sale(uow, product_id, quantity)
        uow.insert("shipping_addresses", graph.shipping_address)
        uow.insert("billing_addresses", graph.billing_address)
        uow.insert("shipments", graph.shipment)
        for row in graph.gifts:
            uow.insert("order_gifts", row)
        if graph.discount_usage is not None:
            uow.insert("discount_code_usage", graph.discount_usage)
        uow.insert("order_status_history", graph.history)

    logger.info(
        "Order %s committed: %d items, %d reservations",
        graph.order["order_number"],
        len(graph.items),
        len(graph.reservations),
    )


def persist_status_transition(
    store: OrderRepository,
    order_id: str,
    from_status: str,
    values: dict[str, Any],
    history: dict[str, Any],
) -> None:
    """Update an order's status (guarded on from_status) and append history together.

    Raises:
        ConflictError: The order's status changed since it was read.
    """
    with store.unit_of_work() as uow:
        uow.update_order(order_id, values, expected_status=from_status)
        uow.insert("order_status_history", history)
