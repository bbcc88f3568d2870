"""Order and payment status state machines.

Pure lookup tables with no I/O. Every order status change in the service
layer is checked here first.
"""

from typing import cast, get_args

from src.api.middleware.error_handler import ValidationError
from src.models.order import OrderStatus
from src.models.payment import PaymentStatus

ORDER_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    "pending": ("processing", "cancelled", "refunded"),
    "processing": ("shipped", "cancelled", "refunded"),
    "shipped": ("delivered", "cancelled", "refunded"),
    "delivered": ("refunded",),
    "cancelled": (),
    "refunded": (),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, tuple[PaymentStatus, ...]] = {
    "pending": ("completed", "failed"),
    "completed": ("refunded",),
    "failed": ("pending",),
    "refunded": (),
}

ORDER_STATUSES: tuple[OrderStatus, ...] = get_args(OrderStatus)


class OrderStatusStateMachine:
    """Valid order status transitions and the reasons for rejecting others."""

    def __init__(self, transitions: dict[OrderStatus, tuple[OrderStatus, ...]] | None = None) -> None:
        self._transitions = transitions or ORDER_TRANSITIONS

    def is_valid_transition(self, from_status: str, to_status: str) -> bool:
        """Check if a status transition is valid."""
        return to_status in self._transitions.get(cast(OrderStatus, from_status), ())

    def valid_next_statuses(self, current: str) -> list[OrderStatus]:
        """Get all valid next statuses for a given current status."""
        return list(self._transitions.get(cast(OrderStatus, current), ()))

    def transition_rejection_reason(self, from_status: str, to_status: str) -> str | None:
        """Get a human-readable reason why a transition is invalid.

        Returns:
            str | None: None when the transition is allowed, otherwise the
            sentence callers surface verbatim.
        """
        if self.is_valid_transition(from_status, to_status):
            return None

        if self.is_terminal(from_status):
            return f"Cannot transition from {from_status} status"

        if from_status == "delivered":
            return "Delivered orders can only be refunded"

        return f"Invalid transition from {from_status} to {to_status}"

    def is_terminal(self, status: str) -> bool:
        """Check if a status is terminal (no way out)."""
        return not self._transitions.get(cast(OrderStatus, status))

    def initial_status(self) -> OrderStatus:
        """Get the initial status for new orders."""
        return "pending"

    def all_statuses(self) -> list[OrderStatus]:
        """Get all possible order statuses."""
        return list(self._transitions.keys())


def parse_order_status(value: str) -> OrderStatus:
    """Validate an order status string.

    Raises:
        ValidationError: If the value is not a known order status.
    """
    if value not in ORDER_STATUSES:
        raise ValidationError.for_field(["status"], f"Unknown order status: {value}")
    return cast(OrderStatus, value)


def is_valid_payment_transition(from_status: str, to_status: str) -> bool:
    """Check a payment status transition (independent of order status)."""
    return to_status in PAYMENT_TRANSITIONS.get(cast(PaymentStatus, from_status), ())


def payment_transition_rejection_reason(from_status: str, to_status: str) -> str | None:
    """Reason a payment transition is rejected, or None if allowed."""
    if is_valid_payment_transition(from_status, to_status):
        return None
    return f"Invalid payment status transition from {from_status} to {to_status}"


order_status_state_machine = OrderStatusStateMachine()
