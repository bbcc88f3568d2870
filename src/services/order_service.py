"""Order domain service: creation, status transitions and payment events."""

import logging
from typing import Any
from uuid import uuid4

from src.api.middleware.error_handler import (
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.notifications import NotificationDispatcher, get_notification_dispatcher
from src.models.order import OrderStatus, PaymentEvent
from src.repositories.base import CatalogRepository, OrderRepository
from src.repositories.factory import get_store
from src.schemas.order import AddressInput, OrderCreate, OrderQuoteRequest
from src.services import inventory_ledger
from src.services.email_service import EmailService
from src.services.order_assembler import (
    build_order_graph,
    persist_order_graph,
    persist_status_transition,
    utc_now_iso,
)
from src.services.order_state_machine import (
    OrderStatusStateMachine,
    order_status_state_machine,
    parse_order_status,
)
from src.services.pricing_service import PricedLine, PricingResult, PricingService

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "address_line1",
    "city",
    "province",
    "postal_code",
    "country",
    "phone",
)

# Milestone timestamp set when an order enters a status
STATUS_TIMESTAMP_FIELDS: dict[str, str] = {
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}

PAYMENT_COMPLETED_NOTE = "Payment completed successfully"
REFUND_PROCESSED_NOTE = "Refund processed successfully"


def validate_addresses(**addresses: AddressInput) -> None:
    """Require every mandatory field of every address.

    Raises:
        ValidationError: One detail entry per missing field, e.g.
            loc ["shipping_address", "city"].
    """
    details = []
    for name, address in addresses.items():
        for field_name in REQUIRED_ADDRESS_FIELDS:
            value = getattr(address, field_name, None)
            if not value or not str(value).strip():
                details.append(
                    {
                        "loc": [name, field_name],
                        "msg": f"{field_name} is required",
                        "type": "missing",
                    }
                )
    if details:
        raise ValidationError(message="Address is incomplete", details=details)


def check_stock(lines: list[PricedLine]) -> None:
    """Pre-transaction stock check, aggregated per variant.

    Raises:
        InsufficientStockError: Naming the product with available vs requested.
    """
    requested: dict[str, int] = {}
    for line in lines:
        if line.variant_id and line.track_inventory:
            requested[line.variant_id] = requested.get(line.variant_id, 0) + line.quantity

    seen: set[str] = set()
    for line in lines:
        if line.variant_id in requested and line.variant_id not in seen:
            seen.add(line.variant_id)
            inventory_ledger.check_available(
                line.product_name,
                line.variant_id,
                line.available_stock,
                requested[line.variant_id],
            )


class OrderService:
    """Service for order creation and the order status lifecycle."""

    def __init__(
        self,
        store: OrderRepository | None = None,
        catalog: CatalogRepository | None = None,
        pricing_service: PricingService | None = None,
        email_service: EmailService | None = None,
        notifications: NotificationDispatcher | None = None,
        state_machine: OrderStatusStateMachine | None = None,
    ) -> None:
        self.store = store or get_store()
        self.catalog = catalog or self.store
        self.pricing_service = pricing_service or PricingService(self.catalog)
        self.email_service = email_service or EmailService()
        self.notifications = notifications or get_notification_dispatcher()
        self.state_machine = state_machine or order_status_state_machine

    async def quote_order(self, data: OrderQuoteRequest, user_id: str | None = None) -> PricingResult:
        """Price a cart for preview. Writes nothing."""
        return await self.pricing_service.quote(
            data.items,
            discount_code=data.discount_code,
            shipping_method_id=data.shipping_method,
            user_id=user_id,
        )

    async def create_order(self, data: OrderCreate, user_id: str | None = None) -> dict[str, Any]:
        """Create an order and everything that belongs to it, atomically.

        Args:
            data: Validated checkout request. Item prices are looked up, never read.
            user_id: Owning customer, None for guest checkout.

        Returns:
            dict: The order row with items, addresses, shipment and gifts.

        Raises:
            ValidationError: Incomplete address or unknown shipping method.
            DiscountCodeError: The discount code failed validation.
            NotFoundError: A product or variant is missing or unavailable.
            InsufficientStockError: Not enough stock, before or during commit.
        """
        validate_addresses(shipping_address=data.shipping_address, billing_address=data.billing_address)

        lines = await self.pricing_service.resolve_lines(data.items)
        check_stock(lines)

        pricing = await self.pricing_service.price(
            lines,
            discount_code=data.discount_code,
            shipping_method_id=data.shipping_method,
            user_id=user_id,
        )

        graph = build_order_graph(
            email=str(data.email),
            user_id=user_id,
            shipping_address=data.shipping_address,
            billing_address=data.billing_address,
            pricing=pricing,
            currency=get_settings().currency,
            customer_note=data.customer_note,
        )
        persist_order_graph(self.store, graph)

        logger.info(
            "Created order %s (%s): total=%d discount=%d gifts=%d",
            graph.order["order_number"],
            graph.order["id"],
            pricing.total_amount,
            pricing.discount_amount,
            len(graph.gifts),
        )
        return graph.as_detail()

    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Get an order with its child rows.

        Raises:
            NotFoundError: If the order does not exist.
        """
        order = self.store.get_order_detail(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def _require_order(self, order_id: str) -> dict[str, Any]:
        order = self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def get_status_history(self, order_id: str) -> list[dict[str, Any]]:
        """History rows for an order, most recent first."""
        await self._require_order(order_id)
        return self.store.get_status_history(order_id)

    async def list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """List orders newest first.

        Returns:
            tuple: (orders on this page, total matching orders)
        """
        if status is not None:
            status = parse_order_status(status)
        return self.store.list_orders(page, limit, status=status, search=search)

    async def get_valid_next_statuses(self, order_id: str) -> tuple[OrderStatus, list[OrderStatus]]:
        """Current status of an order and the statuses it may move to."""
        order = await self._require_order(order_id)
        current = order["status"]
        return current, self.state_machine.valid_next_statuses(current)

    def _transition_values(self, new_status: str, now: str) -> dict[str, Any]:
        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field:
            values[timestamp_field] = now
        if new_status == "shipped":
            values["fulfillment_status"] = "fulfilled"
        return values

    def _history_row(self, order_id: str, status: str, note: str | None, actor: str | None, now: str) -> dict[str, Any]:
        return {
            "id": str(uuid4()),
            "order_id": order_id,
            "status": status,
            "note": note,
            "changed_by": actor or "system",
            "created_at": now,
        }

    async def update_order_status(
        self,
        order_id: str,
        new_status: str,
        note: str | None = None,
        actor: str | None = None,
    ) -> dict[str, Any]:
        """Move an order to a new status.

        The status update and its history row commit together. The customer
        notification is dispatched afterwards and its failure does not affect
        the result.

        Args:
            order_id: Order to update.
            new_status: Target status string.
            note: Optional note stored in history and shown in the email.
            actor: Admin identity; defaults to "system".

        Returns:
            dict: {"order_id", "previous_status", "status"}

        Raises:
            ValidationError: Unknown status string.
            NotFoundError: Order does not exist.
            InvalidStatusTransitionError: With the state machine's reason.
            ConflictError: The order changed concurrently.
        """
        target = parse_order_status(new_status)
        order = await self._require_order(order_id)
        current = order["status"]

        reason = self.state_machine.transition_rejection_reason(current, target)
        if reason is not None:
            logger.info("Rejected transition for order %s: %s", order["order_number"], reason)
            raise InvalidStatusTransitionError(reason, from_status=current, to_status=target)

        now = utc_now_iso()
        values = self._transition_values(target, now)
        persist_status_transition(
            self.store,
            order_id,
            current,
            values,
            self._history_row(order_id, target, note, actor, now),
        )

        logger.info(
            "Order %s status %s -> %s by %s",
            order["order_number"],
            current,
            target,
            actor or "system",
        )

        updated = {**order, **values}
        self.notifications.dispatch(
            self.email_service.send_order_status_email(updated, target, note),
            f"order {order['order_number']} {target} email",
        )

        return {"order_id": order_id, "previous_status": current, "status": target}

    async def handle_payment_event(self, event: PaymentEvent) -> bool:
        """Apply a payment outcome to the order state machine.

        payment_completed moves pending orders to processing; payment_failed
        records history under the current status; refund_processed moves the
        order to refunded. An event the state machine rejects is dropped with
        a warning. No customer emails are sent from here.

        Returns:
            bool: True if a history row was written.

        Raises:
            NotFoundError: Order does not exist.
            ConflictError: The order changed concurrently.
        """
        event_type = event["type"]
        order = await self._require_order(event["order_id"])
        current = order["status"]
        metadata = event.get("metadata") or {}
        now = event.get("timestamp") or utc_now_iso()

        if event_type == "payment_failed":
            reason = metadata.get("reason") or "Unknown reason"
            self.store.append_status_history(
                self._history_row(order["id"], current, f"Payment failed: {reason}", "system", now)
            )
            logger.info("Recorded payment failure on order %s", order["order_number"])
            return True

        if event_type == "payment_completed":
            if current != "pending":
                logger.warning(
                    "Ignoring payment_completed for order %s in status %s",
                    order["order_number"],
                    current,
                )
                return False
            target, note = "processing", PAYMENT_COMPLETED_NOTE
        elif event_type == "refund_processed":
            target, note = "refunded", REFUND_PROCESSED_NOTE
        else:
            logger.warning("Unknown payment event type %s for order %s", event_type, order["order_number"])
            return False

        reason = self.state_machine.transition_rejection_reason(current, target)
        if reason is not None:
            logger.warning(
                "Dropped %s for order %s: %s",
                event_type,
                order["order_number"],
                reason,
            )
            return False

        persist_status_transition(
            self.store,
            order["id"],
            current,
            self._transition_values(target, now),
            self._history_row(order["id"], target, note, "system", now),
        )
        logger.info("Order %s status %s -> %s (%s)", order["order_number"], current, target, event_type)
        return True
