"""Supabase-backed repositories.

PostgREST has no client-side transactions, so multi-row writes are collected
by a unit of work and shipped as one `apply_unit_of_work` RPC call. The
PostgreSQL function (supabase/migrations) applies every operation in a single
transaction and raises on a failed guard, which rolls back the whole unit.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from supabase import Client, PostgrestAPIError

from src.api.middleware.error_handler import ConflictError, InsufficientStockError, NotFoundError
from src.core.supabase import get_supabase_client
from src.models.catalog import ComplimentaryGift, DiscountCode, Product, ProductVariant
from src.models.order import Order, OrderDetail, OrderStatusHistory
from src.models.payment import Payment, PaymentUpdate, WebhookDeadLetter
from src.repositories.base import WRITABLE_TABLES

logger = logging.getLogger(__name__)

# Prefixes of exceptions raised by apply_unit_of_work
INSUFFICIENT_STOCK_PREFIX = "INSUFFICIENT_STOCK:"
STALE_ROW_PREFIX = "STALE_ROW:"
ROW_NOT_FOUND_PREFIX = "ROW_NOT_FOUND:"


def _translate_rpc_error(error: PostgrestAPIError) -> Exception:
    """Map a database exception raised by apply_unit_of_work to a domain error."""
    message = error.message or ""
    if message.startswith(INSUFFICIENT_STOCK_PREFIX):
        variant_id = message[len(INSUFFICIENT_STOCK_PREFIX):]
        return InsufficientStockError(
            f"Insufficient stock for variant {variant_id}",
            variant_id=variant_id,
        )
    if message.startswith(STALE_ROW_PREFIX):
        return ConflictError(f"Row changed concurrently ({message[len(STALE_ROW_PREFIX):]})")
    if message.startswith(ROW_NOT_FOUND_PREFIX):
        return NotFoundError(f"Row not found ({message[len(ROW_NOT_FOUND_PREFIX):]})")
    if error.code == "23505":
        return ConflictError("Duplicate key", details=[{"msg": message, "type": "unique_violation"}])
    return error


class SupabaseUnitOfWork:
    """Collects operations for one apply_unit_of_work call."""

    def __init__(self) -> None:
        self.operations: list[dict[str, Any]] = []

    def insert(self, table: str, row: dict[str, Any]) -> None:
        if table not in WRITABLE_TABLES:
            raise ValueError(f"Table {table} is not writable in a unit of work")
        self.operations.append({"op": "insert", "table": table, "row": row})

    def update_order(
        self,
        order_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        self.operations.append(
            {
                "op": "update",
                "table": "orders",
                "id": order_id,
                "values": values,
                "expected_status": expected_status,
            }
        )

    def update_payment(
        self,
        payment_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        self.operations.append(
            {
                "op": "update",
                "table": "payments",
                "id": payment_id,
                "values": values,
                "expected_status": expected_status,
            }
        )

    def decrement_stock_if_available(self, variant_id: str, quantity: int) -> bool:
        # The conditional decrement runs at commit; a shortfall aborts the
        # whole unit with INSUFFICIENT_STOCK.
        self.operations.append({"op": "decrement_stock", "variant_id": variant_id, "quantity": quantity})
        return True

    def increment_sold_count(self, product_id: str, quantity: int) -> None:
        self.operations.append({"op": "increment_sold", "product_id": product_id, "quantity": quantity})


class SupabaseStore:
    """Catalog, order, payment and dead-letter repositories over Supabase."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    @contextmanager
    def unit_of_work(self) -> Iterator[SupabaseUnitOfWork]:
        uow = SupabaseUnitOfWork()
        yield uow
        if not uow.operations:
            return
        try:
            self.client.rpc("apply_unit_of_work", {"p_operations": uow.operations}).execute()
        except PostgrestAPIError as e:
            translated = _translate_rpc_error(e)
            if translated is e:
                raise
            logger.info("Unit of work rejected: %s", e.message)
            raise translated from e

    def _get_by_id(self, table: str, row_id: str, columns: str = "*") -> dict[str, Any] | None:
        response = self.client.table(table).select(columns).eq("id", row_id).limit(1).execute()
        return response.data[0] if response.data else None

    # CatalogRepository

    def get_product(self, product_id: str) -> Product | None:
        row = self._get_by_id("products", product_id, "*, product_categories(category_id)")
        if row is None:
            return None
        links = row.pop("product_categories", None) or []
        row["category_ids"] = [link["category_id"] for link in links]
        return row

    def get_variant(self, variant_id: str) -> ProductVariant | None:
        return self._get_by_id("product_variants", variant_id)

    def get_discount_code(self, code: str) -> DiscountCode | None:
        # Codes are stored upper-cased (check constraint in the migration)
        response = (
            self.client.table("discount_codes")
            .select("*")
            .eq("code", code.strip().upper())
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def count_discount_usage(self, discount_code_id: str) -> int:
        response = (
            self.client.table("discount_code_usage")
            .select("id", count="exact")
            .eq("discount_code_id", discount_code_id)
            .execute()
        )
        return response.count or 0

    def count_customer_discount_usage(self, discount_code_id: str, user_id: str) -> int:
        response = (
            self.client.table("discount_code_usage")
            .select("id", count="exact")
            .eq("discount_code_id", discount_code_id)
            .eq("user_id", user_id)
            .execute()
        )
        return response.count or 0

    def list_active_gifts(self) -> list[ComplimentaryGift]:
        response = (
            self.client.table("complimentary_gifts")
            .select("*, gift_products(product_id)")
            .eq("is_active", True)
            .execute()
        )
        gifts = []
        for row in response.data or []:
            links = row.pop("gift_products", None) or []
            row["product_ids"] = [link["product_id"] for link in links]
            gifts.append(row)
        return gifts

    # OrderRepository

    def get_order(self, order_id: str) -> Order | None:
        return self._get_by_id("orders", order_id)

    def get_order_detail(self, order_id: str) -> OrderDetail | None:
        order = self._get_by_id(
            "orders",
            order_id,
            "*, order_items(*), shipping_addresses(*), billing_addresses(*), shipments(*), order_gifts(*)",
        )
        if order is None:
            return None

        def first(rows: list[dict[str, Any]] | None) -> dict[str, Any] | None:
            return rows[0] if rows else None

        order["items"] = order.pop("order_items", None) or []
        order["shipping_address"] = first(order.pop("shipping_addresses", None))
        order["billing_address"] = first(order.pop("billing_addresses", None))
        order["shipment"] = first(order.pop("shipments", None))
        order["gifts"] = order.pop("order_gifts", None) or []
        return order

    def get_status_history(self, order_id: str) -> list[OrderStatusHistory]:
        response = (
            self.client.table("order_status_history")
            .select("*")
            .eq("order_id", order_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    def append_status_history(self, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table("order_status_history").insert(row).execute()
        return response.data[0]

    def list_orders(
        self,
        page: int,
        limit: int,
        status: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        query = self.client.table("orders").select("*", count="exact")

        if status:
            query = query.eq("status", status)

        if search:
            query = query.or_(f"order_number.ilike.%{search}%,email.ilike.%{search}%")

        offset = (page - 1) * limit
        response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return response.data or [], response.count or 0

    # PaymentRepository

    def create_payment(self, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table("payments").insert(row).execute()
        return response.data[0]

    def get_payment(self, payment_id: str) -> Payment | None:
        return self._get_by_id("payments", payment_id)

    def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("transaction_id", transaction_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def list_payments_for_order(self, order_id: str) -> list[Payment]:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("order_id", order_id)
            .order("created_at", desc=False)
            .execute()
        )
        return response.data or []

    def update_payment(self, payment_id: str, values: PaymentUpdate) -> Payment:
        response = self.client.table("payments").update(values).eq("id", payment_id).execute()
        if not response.data:
            raise NotFoundError(f"Payment {payment_id} not found")
        return response.data[0]

    # WebhookDeadLetterRepository

    def record_dead_letter(self, row: WebhookDeadLetter) -> None:
        self.client.table("webhook_dead_letters").insert(row).execute()
        logger.info("Recorded webhook dead letter for %s", row.get("provider"))
