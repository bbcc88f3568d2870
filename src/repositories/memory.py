"""In-process store implementing every repository protocol.

For single-instance deployments, local development and tests. A re-entrant
lock serialises units of work. Each unit stages its writes on shallow copies
of the table maps and swaps them in only on commit, so a failed unit leaves
nothing behind. Rows are replaced, never mutated in place, which keeps the
shallow copies safe.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import RLock
from typing import Any
from uuid import uuid4

from src.api.middleware.error_handler import ConflictError, NotFoundError
from src.models.catalog import ComplimentaryGift, DiscountCode, Product, ProductVariant
from src.models.order import Order, OrderDetail, OrderStatusHistory
from src.models.payment import Payment, PaymentUpdate, WebhookDeadLetter
from src.repositories.base import WRITABLE_TABLES

logger = logging.getLogger(__name__)

TABLES = (
    "products",
    "product_variants",
    "discount_codes",
    "complimentary_gifts",
    *sorted(WRITABLE_TABLES),
    "webhook_dead_letters",
)


class InMemoryUnitOfWork:
    """Staged writes against a private copy of the tables."""

    def __init__(self, tables: dict[str, dict[str, dict[str, Any]]]) -> None:
        self.tables = {name: dict(rows) for name, rows in tables.items()}

    def _replace(self, table: str, row_id: str, values: dict[str, Any]) -> dict[str, Any]:
        current = self.tables[table].get(row_id)
        if current is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        updated = {**current, **values}
        self.tables[table][row_id] = updated
        return updated

    def insert(self, table: str, row: dict[str, Any]) -> None:
        if table not in WRITABLE_TABLES:
            raise ValueError(f"Table {table} is not writable in a unit of work")
        row_id = row.get("id") or str(uuid4())
        if row_id in self.tables[table]:
            raise ConflictError(f"Duplicate id {row_id} in {table}")
        if table == "orders":
            number = row.get("order_number")
            if any(o["order_number"] == number for o in self.tables["orders"].values()):
                raise ConflictError(f"Duplicate order number {number}")
        self.tables[table][row_id] = {**row, "id": row_id}

    def _guard(self, table: str, row_id: str, expected_status: str | None) -> None:
        current = self.tables[table].get(row_id)
        if current is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        if expected_status is not None and current.get("status") != expected_status:
            raise ConflictError(
                f"{table} row {row_id} changed concurrently "
                f"(expected {expected_status}, found {current.get('status')})"
            )

    def update_order(
        self,
        order_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        self._guard("orders", order_id, expected_status)
        self._replace("orders", order_id, values)

    def update_payment(
        self,
        payment_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        self._guard("payments", payment_id, expected_status)
        self._replace("payments", payment_id, values)

    def decrement_stock_if_available(self, variant_id: str, quantity: int) -> bool:
        variant = self.tables["product_variants"].get(variant_id)
        if variant is None or variant.get("stock_quantity", 0) < quantity:
            return False
        self._replace(
            "product_variants",
            variant_id,
            {
                "stock_quantity": variant["stock_quantity"] - quantity,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return True

    def increment_sold_count(self, product_id: str, quantity: int) -> None:
        product = self.tables["products"].get(product_id)
        if product is None:
            return
        self._replace("products", product_id, {"sold_count": (product.get("sold_count") or 0) + quantity})


class InMemoryStore:
    """Catalog, order, payment and dead-letter repositories in one process."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._tables: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in TABLES}

    # Unit of work

    @contextmanager
    def unit_of_work(self) -> Iterator[InMemoryUnitOfWork]:
        with self._lock:
            uow = InMemoryUnitOfWork(self._tables)
            yield uow
            self._tables = uow.tables

    # Seeding (catalog data is owned elsewhere; these stand in for it)

    def _seed(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        row = {**row, "id": row.get("id") or str(uuid4())}
        with self._lock:
            self._tables = {**self._tables, table: {**self._tables[table], row["id"]: row}}
        return dict(row)

    def add_product(self, **fields: Any) -> dict[str, Any]:
        row = {
            "description": None,
            "status": "active",
            "track_inventory": True,
            "sold_count": 0,
            "category_ids": [],
            "deleted_at": None,
            **fields,
        }
        return self._seed("products", row)

    def add_variant(self, **fields: Any) -> dict[str, Any]:
        row = {"sku": None, "stock_quantity": 0, "is_active": True, **fields}
        return self._seed("product_variants", row)

    def add_discount_code(self, **fields: Any) -> dict[str, Any]:
        row = {
            "title": fields.get("code", ""),
            "min_purchase_amount": None,
            "max_discount_amount": None,
            "usage_limit": None,
            "usage_limit_per_customer": None,
            "applicable_to_products": None,
            "applicable_to_categories": None,
            "is_active": True,
            "starts_at": None,
            "expires_at": None,
            **fields,
        }
        return self._seed("discount_codes", row)

    def add_discount_usage(self, **fields: Any) -> dict[str, Any]:
        row = {
            "order_id": str(uuid4()),
            "user_id": None,
            "discount_amount": 0,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        return self._seed("discount_code_usage", row)

    def add_gift(self, **fields: Any) -> dict[str, Any]:
        row = {
            "description": None,
            "image_url": None,
            "value": None,
            "min_purchase_amount": None,
            "is_active": True,
            "product_ids": [],
            **fields,
        }
        return self._seed("complimentary_gifts", row)

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Snapshot of a table's rows in insertion order."""
        with self._lock:
            return [dict(r) for r in self._tables[table].values()]

    def _get(self, table: str, row_id: str) -> dict[str, Any] | None:
        row = self._tables[table].get(row_id)
        return dict(row) if row else None

    def _where(self, table: str, **equals: Any) -> list[dict[str, Any]]:
        return [
            dict(r)
            for r in self._tables[table].values()
            if all(r.get(k) == v for k, v in equals.items())
        ]

    # CatalogRepository

    def get_product(self, product_id: str) -> Product | None:
        return self._get("products", product_id)

    def get_variant(self, variant_id: str) -> ProductVariant | None:
        return self._get("product_variants", variant_id)

    def get_discount_code(self, code: str) -> DiscountCode | None:
        wanted = code.strip().upper()
        for row in self._tables["discount_codes"].values():
            if row["code"].upper() == wanted:
                return dict(row)
        return None

    def count_discount_usage(self, discount_code_id: str) -> int:
        return len(self._where("discount_code_usage", discount_code_id=discount_code_id))

    def count_customer_discount_usage(self, discount_code_id: str, user_id: str) -> int:
        return len(self._where("discount_code_usage", discount_code_id=discount_code_id, user_id=user_id))

    def list_active_gifts(self) -> list[ComplimentaryGift]:
        return self._where("complimentary_gifts", is_active=True)

    # OrderRepository

    def get_order(self, order_id: str) -> Order | None:
        return self._get("orders", order_id)

    def get_order_detail(self, order_id: str) -> OrderDetail | None:
        with self._lock:
            order = self._get("orders", order_id)
            if order is None:
                return None
            shipping = self._where("shipping_addresses", order_id=order_id)
            billing = self._where("billing_addresses", order_id=order_id)
            shipments = self._where("shipments", order_id=order_id)
            order["items"] = self._where("order_items", order_id=order_id)
            order["shipping_address"] = shipping[0] if shipping else None
            order["billing_address"] = billing[0] if billing else None
            order["shipment"] = shipments[0] if shipments else None
            order["gifts"] = self._where("order_gifts", order_id=order_id)
            return order

    def get_status_history(self, order_id: str) -> list[OrderStatusHistory]:
        # Insertion order is the total order within an order
        return list(reversed(self._where("order_status_history", order_id=order_id)))

    def append_status_history(self, row: dict[str, Any]) -> dict[str, Any]:
        with self.unit_of_work() as uow:
            uow.insert("order_status_history", row)
        return dict(row)

    def list_orders(
        self,
        page: int,
        limit: int,
        status: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        rows = self.rows("orders")
        if status:
            rows = [r for r in rows if r["status"] == status]
        if search:
            needle = search.lower()
            rows = [
                r for r in rows
                if needle in r["order_number"].lower() or needle in r["email"].lower()
            ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        offset = (page - 1) * limit
        return rows[offset:offset + limit], len(rows)

    # PaymentRepository

    def create_payment(self, row: dict[str, Any]) -> dict[str, Any]:
        with self.unit_of_work() as uow:
            uow.insert("payments", row)
        return dict(row)

    def get_payment(self, payment_id: str) -> Payment | None:
        return self._get("payments", payment_id)

    def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        matches = self._where("payments", transaction_id=transaction_id)
        return matches[0] if matches else None

    def list_payments_for_order(self, order_id: str) -> list[Payment]:
        return self._where("payments", order_id=order_id)

    def update_payment(self, payment_id: str, values: PaymentUpdate) -> Payment:
        with self.unit_of_work() as uow:
            uow.update_payment(payment_id, values)
            return dict(uow.tables["payments"][payment_id])

    # WebhookDeadLetterRepository

    def record_dead_letter(self, row: WebhookDeadLetter) -> None:
        self._seed("webhook_dead_letters", row)
        logger.info("Recorded webhook dead letter for %s", row.get("provider"))
