"""Unit tests for OrderService."""

import logging
import re
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.middleware.error_handler import (
    ConflictError,
    DiscountCodeError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from src.repositories.memory import InMemoryStore
from src.schemas.order import OrderCreate, OrderQuoteRequest
from src.services.order_assembler import generate_order_number, persist_status_transition
from src.services.order_service import OrderService

Payload = Callable[..., dict[str, Any]]


async def _create(service: OrderService, order_payload: Payload, user_id: str | None = None, **overrides: Any) -> dict[str, Any]:
    return await service.create_order(OrderCreate.model_validate(order_payload(**overrides)), user_id=user_id)


class TestCreateOrder:
    """Tests for OrderService.create_order."""

    @pytest.mark.asyncio
    async def test_creates_full_order_graph(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload, user_id="user-1", customer_note="Leave at door")

        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["fulfillment_status"] == "unfulfilled"
        assert order["order_number"].startswith("ORD-")
        assert order["total_amount"] == 16050
        assert order["user_id"] == "user-1"
        assert order["customer_note"] == "Leave at door"
        assert order["items"][0]["unit_price"] == 5000
        assert order["items"][0]["subtotal"] == 10000
        assert order["items"][0]["product_snapshot"]["variant"]["sku"] == "SHIRT-M"
        assert order["shipment"]["shipping_method"] == "standard"
        assert order["shipping_address"]["city"] == "Bangkok"

        assert store.get_variant("var-shirt-m")["stock_quantity"] == 8
        assert store.get_product("prod-shirt")["sold_count"] == 2

        history = store.get_status_history(order["id"])
        assert len(history) == 1
        assert history[0]["status"] == "pending"
        assert history[0]["note"] == "Order created"

        detail = store.get_order_detail(order["id"])
        assert detail is not None
        assert len(detail["items"]) == 1
        assert detail["billing_address"] is not None

    @pytest.mark.asyncio
    async def test_guest_checkout(self, order_service: OrderService, catalog: dict[str, Any], order_payload: Payload) -> None:
        order = await _create(order_service, order_payload)

        assert order["user_id"] is None

    @pytest.mark.asyncio
    async def test_untracked_product_keeps_no_reservation(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload, items=[{"product_id": "prod-ebook", "quantity": 1}])

        assert order["items"][0]["variant_id"] is None
        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10
        assert store.get_product("prod-ebook")["sold_count"] == 1

    @pytest.mark.asyncio
    async def test_discount_usage_and_gifts_recorded(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        code = store.add_discount_code(code="SAVE10", discount_type="percentage", discount_value=10)
        store.add_gift(id="gift-sticker", name="Sticker", min_purchase_amount=5000, value=300)

        order = await _create(order_service, order_payload, user_id="user-1", discount_code="SAVE10")

        assert order["discount_amount"] == 1000
        assert order["total_amount"] == 15050
        usage = store.rows("discount_code_usage")
        assert len(usage) == 1
        assert usage[0]["discount_code_id"] == code["id"]
        assert usage[0]["user_id"] == "user-1"
        assert usage[0]["discount_amount"] == 1000
        assert [g["gift_name"] for g in order["gifts"]] == ["Sticker"]
        assert order["gifts"][0]["gift_value"] == 300

    @pytest.mark.asyncio
    async def test_rejected_discount_writes_nothing(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        with pytest.raises(DiscountCodeError):
            await _create(order_service, order_payload, discount_code="BOGUS")

        assert store.rows("orders") == []
        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10

    @pytest.mark.asyncio
    async def test_insufficient_stock_message(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        with pytest.raises(InsufficientStockError) as exc_info:
            await _create(
                order_service,
                order_payload,
                items=[{"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": 11}],
            )

        assert exc_info.value.message == "Insufficient stock for Cotton Shirt. Available: 10, Requested: 11"
        assert store.rows("orders") == []

    @pytest.mark.asyncio
    async def test_stock_aggregated_across_lines(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        line = {"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": 6}

        with pytest.raises(InsufficientStockError):
            await _create(order_service, order_payload, items=[line, line])

        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10

    @pytest.mark.asyncio
    async def test_failure_mid_commit_rolls_back_everything(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        """Test that a stock race lost during commit leaves no partial rows."""
        store.add_product(id="prod-cap", name="Cap", base_price=1500)
        store.add_variant(id="var-cap", product_id="prod-cap", name="One size", price=1500, stock_quantity=1)
        data = OrderCreate.model_validate(
            order_payload(
                items=[
                    {"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": 2},
                    {"product_id": "prod-cap", "variant_id": "var-cap", "quantity": 1},
                ]
            )
        )
        lines = await order_service.pricing_service.resolve_lines(data.items)
        # Another checkout takes the last cap after the pre-check read
        with store.unit_of_work() as uow:
            uow.decrement_stock_if_available("var-cap", 1)
        order_service.pricing_service.resolve_lines = AsyncMock(return_value=lines)

        with pytest.raises(InsufficientStockError):
            await order_service.create_order(data)

        assert store.rows("orders") == []
        assert store.rows("order_items") == []
        assert store.rows("order_status_history") == []
        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10
        assert store.get_product("prod-shirt")["sold_count"] == 0

    @pytest.mark.asyncio
    async def test_incomplete_addresses_report_each_field(
        self,
        order_service: OrderService,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        payload = order_payload()
        payload["shipping_address"]["city"] = "  "
        payload["billing_address"].pop("phone")

        with pytest.raises(ValidationError) as exc_info:
            await order_service.create_order(OrderCreate.model_validate(payload))

        locs = [d["loc"] for d in exc_info.value.details]
        assert locs == [["shipping_address", "city"], ["billing_address", "phone"]]

    @pytest.mark.asyncio
    async def test_missing_product(self, order_service: OrderService, catalog: dict[str, Any], order_payload: Payload) -> None:
        with pytest.raises(NotFoundError):
            await _create(order_service, order_payload, items=[{"product_id": "prod-gone", "quantity": 1}])


class TestQuoteOrder:
    @pytest.mark.asyncio
    async def test_quote_writes_nothing(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
    ) -> None:
        data = OrderQuoteRequest.model_validate(
            {"items": [{"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": 2}]}
        )

        result = await order_service.quote_order(data)

        assert result.total_amount == 16050
        assert store.rows("orders") == []
        assert store.get_variant("var-shirt-m")["stock_quantity"] == 10


class TestStatusTransitions:
    """Tests for update_order_status."""

    @pytest.mark.asyncio
    async def test_valid_transition(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
        mock_dispatcher: MagicMock,
        mock_email_service: MagicMock,
    ) -> None:
        order = await _create(order_service, order_payload)

        result = await order_service.update_order_status(order["id"], "processing", note="Packing", actor="admin-1")

        assert result == {"order_id": order["id"], "previous_status": "pending", "status": "processing"}
        assert store.get_order(order["id"])["status"] == "processing"
        history = store.get_status_history(order["id"])
        assert history[0]["status"] == "processing"
        assert history[0]["note"] == "Packing"
        assert history[0]["changed_by"] == "admin-1"
        mock_email_service.send_order_status_email.assert_called_once()
        assert mock_email_service.send_order_status_email.call_args.args[1] == "processing"
        mock_dispatcher.dispatch.assert_called_once()

    @pytest.mark.asyncio
    async def test_shipped_sets_timestamp_and_fulfillment(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload)
        await order_service.update_order_status(order["id"], "processing")
        await order_service.update_order_status(order["id"], "shipped")

        stored = store.get_order(order["id"])
        assert stored["shipped_at"] is not None
        assert stored["fulfillment_status"] == "fulfilled"
        assert [h["status"] for h in store.get_status_history(order["id"])] == ["shipped", "processing", "pending"]

    @pytest.mark.asyncio
    async def test_pending_to_delivered_rejected(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
        mock_dispatcher: MagicMock,
    ) -> None:
        order = await _create(order_service, order_payload)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await order_service.update_order_status(order["id"], "delivered")

        assert exc_info.value.message == "Invalid transition from pending to delivered"
        assert len(store.get_status_history(order["id"])) == 1
        mock_dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(
        self,
        order_service: OrderService,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload)
        await order_service.update_order_status(order["id"], "cancelled")

        for target in ("pending", "processing", "refunded"):
            with pytest.raises(InvalidStatusTransitionError) as exc_info:
                await order_service.update_order_status(order["id"], target)
            assert exc_info.value.message == "Cannot transition from cancelled status"

    @pytest.mark.asyncio
    async def test_unknown_status(self, order_service: OrderService, catalog: dict[str, Any], order_payload: Payload) -> None:
        order = await _create(order_service, order_payload)

        with pytest.raises(ValidationError):
            await order_service.update_order_status(order["id"], "teleported")

    @pytest.mark.asyncio
    async def test_missing_order(self, order_service: OrderService) -> None:
        with pytest.raises(NotFoundError):
            await order_service.update_order_status("missing", "processing")

    @pytest.mark.asyncio
    async def test_stale_read_conflicts(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload)
        await order_service.update_order_status(order["id"], "processing")

        with pytest.raises(ConflictError):
            persist_status_transition(
                store,
                order["id"],
                "pending",
                {"status": "cancelled"},
                {"id": "h-stale", "order_id": order["id"], "status": "cancelled"},
            )

        assert store.get_order(order["id"])["status"] == "processing"

    @pytest.mark.asyncio
    async def test_valid_next_statuses(self, order_service: OrderService, catalog: dict[str, Any], order_payload: Payload) -> None:
        order = await _create(order_service, order_payload)

        current, next_statuses = await order_service.get_valid_next_statuses(order["id"])

        assert current == "pending"
        assert next_statuses == ["processing", "cancelled", "refunded"]


class TestPaymentEvents:
    """Tests for handle_payment_event."""

    @pytest.mark.asyncio
    async def test_payment_completed_moves_to_processing(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
        mock_dispatcher: MagicMock,
    ) -> None:
        order = await _create(order_service, order_payload)

        applied = await order_service.handle_payment_event({"type": "payment_completed", "order_id": order["id"]})

        assert applied is True
        assert store.get_order(order["id"])["status"] == "processing"
        assert store.get_status_history(order["id"])[0]["note"] == "Payment completed successfully"
        mock_dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_payment_completed_on_processing_is_noop(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        order = await _create(order_service, order_payload)
        await order_service.update_order_status(order["id"], "processing")

        with caplog.at_level(logging.WARNING, logger="src.services.order_service"):
            applied = await order_service.handle_payment_event(
                {"type": "payment_completed", "order_id": order["id"]}
            )

        assert applied is False
        assert store.get_order(order["id"])["status"] == "processing"
        assert len(store.get_status_history(order["id"])) == 2
        assert any(
            r.levelno == logging.WARNING and "Ignoring payment_completed" in r.getMessage() for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_payment_failed_records_history_only(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload)

        applied = await order_service.handle_payment_event(
            {"type": "payment_failed", "order_id": order["id"], "metadata": {"reason": "Card declined"}}
        )

        assert applied is True
        assert store.get_order(order["id"])["status"] == "pending"
        latest = store.get_status_history(order["id"])[0]
        assert latest["status"] == "pending"
        assert latest["note"] == "Payment failed: Card declined"

    @pytest.mark.asyncio
    async def test_refund_on_cancelled_order_dropped(
        self,
        order_service: OrderService,
        store: InMemoryStore,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        order = await _create(order_service, order_payload)
        await order_service.update_order_status(order["id"], "cancelled")

        applied = await order_service.handle_payment_event({"type": "refund_processed", "order_id": order["id"]})

        assert applied is False
        assert store.get_order(order["id"])["status"] == "cancelled"


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_orders_filters_and_pages(
        self,
        order_service: OrderService,
        catalog: dict[str, Any],
        order_payload: Payload,
    ) -> None:
        first = await _create(order_service, order_payload, email="alice@example.com")
        await _create(order_service, order_payload, email="bob@example.com")
        await order_service.update_order_status(first["id"], "cancelled")

        cancelled, total = await order_service.list_orders(status="cancelled")
        assert total == 1
        assert cancelled[0]["id"] == first["id"]

        found, total = await order_service.list_orders(search="BOB@")
        assert total == 1
        assert found[0]["email"] == "bob@example.com"

        page, total = await order_service.list_orders(page=2, limit=1)
        assert total == 2
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_list_orders_rejects_unknown_status(self, order_service: OrderService) -> None:
        with pytest.raises(ValidationError):
            await order_service.list_orders(status="lost")

    @pytest.mark.asyncio
    async def test_get_order_not_found(self, order_service: OrderService) -> None:
        with pytest.raises(NotFoundError):
            await order_service.get_order("missing")

        with pytest.raises(NotFoundError):
            await order_service.get_status_history("missing")


def test_order_number_format() -> None:
    numbers = [generate_order_number() for _ in range(20)]

    assert all(re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{4}", n) for n in numbers)
    assert len(set(numbers)) == len(numbers)
