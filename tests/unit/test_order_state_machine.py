"""Unit tests for the order and payment status state machines."""

import itertools

import pytest

from src.api.middleware.error_handler import ValidationError
from src.services.order_state_machine import (
    ORDER_STATUSES,
    OrderStatusStateMachine,
    is_valid_payment_transition,
    parse_order_status,
    payment_transition_rejection_reason,
)

ALLOWED = {
    ("pending", "processing"),
    ("pending", "cancelled"),
    ("pending", "refunded"),
    ("processing", "shipped"),
    ("processing", "cancelled"),
    ("processing", "refunded"),
    ("shipped", "delivered"),
    ("shipped", "cancelled"),
    ("shipped", "refunded"),
    ("delivered", "refunded"),
}


@pytest.fixture
def machine() -> OrderStatusStateMachine:
    return OrderStatusStateMachine()


class TestOrderTransitions:
    """Tests for OrderStatusStateMachine.is_valid_transition."""

    @pytest.mark.parametrize("from_status,to_status", list(itertools.product(ORDER_STATUSES, repeat=2)))
    def test_every_pair(self, machine: OrderStatusStateMachine, from_status: str, to_status: str) -> None:
        """Test all 36 pairs against the allowed set."""
        expected = (from_status, to_status) in ALLOWED
        assert machine.is_valid_transition(from_status, to_status) is expected

    def test_self_transitions_rejected(self, machine: OrderStatusStateMachine) -> None:
        for status in ORDER_STATUSES:
            assert machine.is_valid_transition(status, status) is False

    def test_unknown_status_is_not_valid(self, machine: OrderStatusStateMachine) -> None:
        assert machine.is_valid_transition("archived", "pending") is False
        assert machine.valid_next_statuses("archived") == []


class TestRejectionReasons:
    """Tests for transition_rejection_reason."""

    def test_allowed_transition_has_no_reason(self, machine: OrderStatusStateMachine) -> None:
        assert machine.transition_rejection_reason("pending", "processing") is None

    def test_pending_to_delivered(self, machine: OrderStatusStateMachine) -> None:
        assert machine.transition_rejection_reason("pending", "delivered") == "Invalid transition from pending to delivered"

    @pytest.mark.parametrize("terminal", ["cancelled", "refunded"])
    def test_terminal_statuses(self, machine: OrderStatusStateMachine, terminal: str) -> None:
        for target in ORDER_STATUSES:
            assert machine.transition_rejection_reason(terminal, target) == f"Cannot transition from {terminal} status"

    def test_delivered_can_only_be_refunded(self, machine: OrderStatusStateMachine) -> None:
        assert machine.transition_rejection_reason("delivered", "shipped") == "Delivered orders can only be refunded"
        assert machine.transition_rejection_reason("delivered", "refunded") is None


class TestHelpers:
    """Tests for terminal checks, next statuses and parsing."""

    def test_terminal(self, machine: OrderStatusStateMachine) -> None:
        assert machine.is_terminal("cancelled")
        assert machine.is_terminal("refunded")
        assert not machine.is_terminal("delivered")

    def test_valid_next_statuses(self, machine: OrderStatusStateMachine) -> None:
        assert machine.valid_next_statuses("pending") == ["processing", "cancelled", "refunded"]
        assert machine.valid_next_statuses("delivered") == ["refunded"]

    def test_initial_status(self, machine: OrderStatusStateMachine) -> None:
        assert machine.initial_status() == "pending"
        assert set(machine.all_statuses()) == set(ORDER_STATUSES)

    def test_parse_order_status(self) -> None:
        assert parse_order_status("shipped") == "shipped"
        with pytest.raises(ValidationError) as exc_info:
            parse_order_status("lost")
        assert exc_info.value.details[0]["loc"] == ["status"]


class TestPaymentTransitions:
    """Tests for the payment status transitions."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [("pending", "completed"), ("pending", "failed"), ("completed", "refunded"), ("failed", "pending")],
    )
    def test_allowed(self, from_status: str, to_status: str) -> None:
        assert is_valid_payment_transition(from_status, to_status)
        assert payment_transition_rejection_reason(from_status, to_status) is None

    @pytest.mark.parametrize(
        "from_status,to_status",
        [("completed", "failed"), ("refunded", "completed"), ("pending", "refunded"), ("failed", "completed")],
    )
    def test_rejected(self, from_status: str, to_status: str) -> None:
        assert not is_valid_payment_transition(from_status, to_status)
        assert payment_transition_rejection_reason(from_status, to_status) == (
            f"Invalid payment status transition from {from_status} to {to_status}"
        )
