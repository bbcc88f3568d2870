"""Unit tests for the inventory ledger and concurrent stock reservation."""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

import pytest

from src.api.middleware.error_handler import InsufficientStockError
from src.repositories.memory import InMemoryStore
from src.schemas.order import OrderCreate
from src.services import inventory_ledger
from src.services.order_service import OrderService
from src.services.pricing_service import PricedLine


def _line(variant_id: str | None, quantity: int, track: bool = True) -> PricedLine:
    return PricedLine(
        product_id="prod-shirt",
        variant_id=variant_id,
        product_name="Cotton Shirt",
        variant_name=None,
        sku=None,
        unit_price=5000,
        quantity=quantity,
        category_ids=(),
        track_inventory=track,
        available_stock=10,
        product_snapshot={},
    )


class TestReserve:
    """Tests for the conditional decrement."""

    def test_reserve_decrements(self, store: InMemoryStore, catalog: dict[str, Any]) -> None:
        with store.unit_of_work() as uow:
            inventory_ledger.reserve(uow, "var-shirt-m", 4)

        assert store.get_variant("var-shirt-m")["stock_quantity"] == 6

    def test_reserve_exact_stock(self, store: InMemoryStore, catalog: dict[str, Any]) -> None:
        with store.unit_of_work() as uow:
            inventory_ledger.reserve(uow, "var-shirt-m", 10)

        assert store.get_variant("var-shirt-m")["stock_quantity"] == 0

    def test_shortfall_rolls_back_unit(self, store: InMemoryStore, catalog: dict[str, Any]) -> None:
        with pytest.raises(InsufficientStockError) as exc_info:
            with store.unit_of_work() as uow:
                inventory_ledger.reserve(uow, "var-shirt-m", 4)
                inventory_ledger.reserve(uow, "var-shirt-m", 7)

        assert exc_info.value.variant_id == "var-shirt-m"
        assert exc_info.value.requested == 7
        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10

    def test_non_positive_quantity(self, store: InMemoryStore, catalog: dict[str, Any]) -> None:
        with pytest.raises(ValueError):
            with store.unit_of_work() as uow:
                inventory_ledger.reserve(uow, "var-shirt-m", 0)

    def test_record_sale(self, store: InMemoryStore, catalog: dict[str, Any]) -> None:
        with store.unit_of_work() as uow:
            inventory_ledger.record_sale(uow, "prod-shirt", 3)

        assert store.get_product("prod-shirt")["sold_count"] == 3


class TestHelpers:
    def test_check_available_message(self) -> None:
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_ledger.check_available("Cotton Shirt", "var-shirt-m", 1, 2)

        assert exc_info.value.message == "Insufficient stock for Cotton Shirt. Available: 1, Requested: 2"
        assert exc_info.value.available == 1

    def test_reservations_merge_per_variant(self) -> None:
        lines = [_line("v1", 2), _line("v1", 3), _line("v2", 1), _line(None, 5), _line("v3", 4, track=False)]

        assert inventory_ledger.reservations_for(lines) == [("v1", 5), ("v2", 1)]


class TestConcurrentOrders:
    """N simultaneous orders against one variant."""

    def test_exactly_floor_s_over_q_succeed(
        self,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_service: OrderService,
        order_payload: Callable[..., dict[str, Any]],
    ) -> None:
        stock, quantity, attempts = 10, 3, 8
        data = OrderCreate.model_validate(
            order_payload(items=[{"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": quantity}])
        )
        barrier = threading.Barrier(attempts)

        def attempt() -> str:
            barrier.wait()
            try:
                asyncio.run(order_service.create_order(data))
                return "ok"
            except InsufficientStockError:
                return "insufficient"

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            results = list(pool.map(lambda _: attempt(), range(attempts)))

        assert results.count("ok") == stock // quantity
        assert results.count("insufficient") == attempts - stock // quantity
        assert store.get_variant("var-shirt-m")["stock_quantity"] == stock % quantity
        assert len(store.rows("orders")) == stock // quantity
        assert store.get_product("prod-shirt")["sold_count"] == (stock // quantity) * quantity
