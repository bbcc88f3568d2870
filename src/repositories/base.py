"""Repository interfaces for the order engine.

Services depend on these protocols. SupabaseStore and InMemoryStore both
implement all of them; tests may substitute their own implementations.
"""

from contextlib import AbstractContextManager
from typing import Any, Protocol

from src.models.catalog import ComplimentaryGift, DiscountCode, Product, ProductVariant
from src.models.order import Order, OrderDetail, OrderStatusHistory
from src.models.payment import Payment, PaymentUpdate, WebhookDeadLetter

# Tables a unit of work may insert into
WRITABLE_TABLES = frozenset(
    {
        "orders",
        "order_items",
        "shipping_addresses",
        "billing_addresses",
        "shipments",
        "order_gifts",
        "discount_code_usage",
        "order_status_history",
        "payments",
    }
)


class StockLedger(Protocol):
    """Transactional view of catalog stock counters."""

    def decrement_stock_if_available(self, variant_id: str, quantity: int) -> bool:
        """Decrement stock only if current stock >= quantity.

        Returns:
            bool: False when no row was affected (not enough stock).
        """
        ...

    def increment_sold_count(self, product_id: str, quantity: int) -> None:
        """Add quantity to the product's sold count."""
        ...


class UnitOfWork(StockLedger, Protocol):
    """A set of writes that commits or rolls back as a whole.

    Guarded updates (expected_status) fail the whole unit with ConflictError
    when the row's status no longer matches.
    """

    def insert(self, table: str, row: dict[str, Any]) -> None:
        ...

    def update_order(
        self,
        order_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        ...

    def update_payment(
        self,
        payment_id: str,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> None:
        ...


class TransactionalStore(Protocol):
    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:
        """Open a unit of work; leaving the block without error commits it."""
        ...


class CatalogRepository(Protocol):
    """Read access to catalog and promotion data."""

    def get_product(self, product_id: str) -> Product | None:
        ...

    def get_variant(self, variant_id: str) -> ProductVariant | None:
        ...

    def get_discount_code(self, code: str) -> DiscountCode | None:
        """Look up an active-or-not code, case-insensitively."""
        ...

    def count_discount_usage(self, discount_code_id: str) -> int:
        ...

    def count_customer_discount_usage(self, discount_code_id: str, user_id: str) -> int:
        ...

    def list_active_gifts(self) -> list[ComplimentaryGift]:
        """Active complimentary gifts, each with its associated product_ids."""
        ...


class OrderRepository(TransactionalStore, Protocol):
    """Order graph persistence."""

    def get_order(self, order_id: str) -> Order | None:
        ...

    def get_order_detail(self, order_id: str) -> OrderDetail | None:
        """Order row with items, addresses, shipment and gifts attached."""
        ...

    def get_status_history(self, order_id: str) -> list[OrderStatusHistory]:
        """History rows, most recent first."""
        ...

    def append_status_history(self, row: dict[str, Any]) -> dict[str, Any]:
        ...

    def list_orders(
        self,
        page: int,
        limit: int,
        status: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        ...


class PaymentRepository(TransactionalStore, Protocol):
    """Payment attempt persistence."""

    def create_payment(self, row: dict[str, Any]) -> dict[str, Any]:
        ...

    def get_payment(self, payment_id: str) -> Payment | None:
        ...

    def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        ...

    def list_payments_for_order(self, order_id: str) -> list[Payment]:
        ...

    def update_payment(self, payment_id: str, values: PaymentUpdate) -> Payment:
        """Unguarded single-row update (audit fields)."""
        ...


class WebhookDeadLetterRepository(Protocol):
    def record_dead_letter(self, row: WebhookDeadLetter) -> None:
        ...
