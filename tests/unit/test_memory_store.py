"""Unit tests for InMemoryStore."""

import pytest

from src.api.middleware.error_handler import ConflictError, NotFoundError
from src.repositories.memory import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_product(id="prod-1", name="Shirt", base_price=1000)
    store.add_variant(id="var-1", product_id="prod-1", name="M", price=1200, stock_quantity=5)
    return store


def _order_row(order_id: str, number: str, status: str = "pending") -> dict:
    return {
        "id": order_id,
        "order_number": number,
        "email": f"{order_id}@example.com",
        "status": status,
        "created_at": f"2026-10-19T00:00:0{order_id[-1]}+00:00",
    }


class TestUnitOfWork:
    """Tests for commit and rollback of staged writes."""

    def test_commit_applies_all_writes(self, store: InMemoryStore) -> None:
        with store.unit_of_work() as uow:
            uow.insert("orders", _order_row("ord-1", "ORD-1"))
            assert uow.decrement_stock_if_available("var-1", 3)
            uow.increment_sold_count("prod-1", 3)

        assert store.get_order("ord-1")["status"] == "pending"
        assert store.get_variant("var-1")["stock_quantity"] == 2
        assert store.get_product("prod-1")["sold_count"] == 3

    def test_exception_discards_all_writes(self, store: InMemoryStore) -> None:
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.insert("orders", _order_row("ord-1", "ORD-1"))
                uow.decrement_stock_if_available("var-1", 3)
                raise RuntimeError("boom")

        assert store.get_order("ord-1") is None
        assert store.get_variant("var-1")["stock_quantity"] == 5

    def test_decrement_refuses_shortfall(self, store: InMemoryStore) -> None:
        with store.unit_of_work() as uow:
            assert not uow.decrement_stock_if_available("var-1", 6)
            assert not uow.decrement_stock_if_available("missing", 1)

        assert store.get_variant("var-1")["stock_quantity"] == 5

    def test_guarded_update_conflicts_on_stale_status(self, store: InMemoryStore) -> None:
        with store.unit_of_work() as uow:
            uow.insert("orders", _order_row("ord-1", "ORD-1", status="confirmed"))

        with pytest.raises(ConflictError):
            with store.unit_of_work() as uow:
                uow.update_order("ord-1", {"status": "processing"}, expected_status="pending")

        assert store.get_order("ord-1")["status"] == "confirmed"

    def test_update_missing_row(self, store: InMemoryStore) -> None:
        with pytest.raises(NotFoundError):
            with store.unit_of_work() as uow:
                uow.update_payment("pay-1", {"status": "failed"})

    def test_duplicate_order_number(self, store: InMemoryStore) -> None:
        with store.unit_of_work() as uow:
            uow.insert("orders", _order_row("ord-1", "ORD-1"))

        with pytest.raises(ConflictError):
            with store.unit_of_work() as uow:
                uow.insert("orders", _order_row("ord-2", "ORD-1"))

    def test_insert_rejects_catalog_tables(self, store: InMemoryStore) -> None:
        with pytest.raises(ValueError):
            with store.unit_of_work() as uow:
                uow.insert("products", {"id": "prod-2"})


class TestQueries:
    """Tests for read paths."""

    def test_discount_code_lookup_is_case_insensitive(self, store: InMemoryStore) -> None:
        store.add_discount_code(id="dc-1", code="SAVE10", discount_type="percentage", discount_value=10)

        assert store.get_discount_code(" save10 ")["id"] == "dc-1"
        assert store.get_discount_code("OTHER") is None

    def test_discount_usage_counts(self, store: InMemoryStore) -> None:
        store.add_discount_usage(discount_code_id="dc-1", user_id="user-1")
        store.add_discount_usage(discount_code_id="dc-1", user_id="user-2")
        store.add_discount_usage(discount_code_id="dc-2", user_id="user-1")

        assert store.count_discount_usage("dc-1") == 2
        assert store.count_customer_discount_usage("dc-1", "user-1") == 1

    def test_list_orders_filters_and_paginates(self, store: InMemoryStore) -> None:
        with store.unit_of_work() as uow:
            uow.insert("orders", _order_row("ord-1", "ORD-AAA"))
            uow.insert("orders", _order_row("ord-2", "ORD-BBB", status="shipped"))
            uow.insert("orders", _order_row("ord-3", "ORD-CCC"))

        rows, total = store.list_orders(page=1, limit=1, status="pending")
        assert total == 2
        assert [r["id"] for r in rows] == ["ord-3"]

        rows, total = store.list_orders(page=1, limit=10, search="bbb")
        assert total == 1
        assert rows[0]["id"] == "ord-2"

    def test_status_history_newest_first(self, store: InMemoryStore) -> None:
        store.append_status_history({"id": "h-1", "order_id": "ord-1", "to_status": "pending"})
        store.append_status_history({"id": "h-2", "order_id": "ord-1", "to_status": "confirmed"})

        assert [h["id"] for h in store.get_status_history("ord-1")] == ["h-2", "h-1"]

    def test_returned_rows_are_copies(self, store: InMemoryStore) -> None:
        variant = store.get_variant("var-1")
        variant["stock_quantity"] = 0

        assert store.get_variant("var-1")["stock_quantity"] == 5

    def test_payment_lookup_by_transaction_id(self, store: InMemoryStore) -> None:
        store.create_payment({"id": "pay-1", "order_id": "ord-1", "transaction_id": "TX-1", "status": "pending"})

        assert store.get_payment_by_transaction_id("TX-1")["id"] == "pay-1"
        assert store.update_payment("pay-1", {"status": "failed"})["status"] == "failed"
        assert store.list_payments_for_order("ord-1")[0]["status"] == "failed"

    def test_record_dead_letter(self, store: InMemoryStore) -> None:
        store.record_dead_letter({"provider": "promptpay", "error": "boom"})

        rows = store.rows("webhook_dead_letters")
        assert len(rows) == 1
        assert rows[0]["id"]
