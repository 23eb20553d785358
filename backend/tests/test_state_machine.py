"""
Tests for the order lifecycle transition table.
"""

import pytest

from gatehouse.core.errors import InvalidStateTransitionError
from gatehouse.core.state_machine import ADMITTABLE_STATUSES, OrderStateMachine, OrderStatus


@pytest.mark.parametrize("from_status,to_status", [
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.FAILED),
    (OrderStatus.FAILED, OrderStatus.CONFIRMED),
    (OrderStatus.FAILED, OrderStatus.REFUND_REQUIRED),
    (OrderStatus.CONFIRMED, OrderStatus.CHECKED_IN),
    (OrderStatus.RSVP_CONFIRMED, OrderStatus.CHECKED_IN),
])
def test_allowed_transitions(from_status, to_status):
    assert OrderStateMachine.can_transition(from_status, to_status)
    OrderStateMachine.validate_transition(from_status, to_status)


@pytest.mark.parametrize("from_status,to_status", [
    (OrderStatus.CONFIRMED, OrderStatus.PENDING_PAYMENT),
    (OrderStatus.CONFIRMED, OrderStatus.FAILED),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CHECKED_IN),
    (OrderStatus.CHECKED_IN, OrderStatus.CONFIRMED),
    (OrderStatus.REFUND_REQUIRED, OrderStatus.CONFIRMED),
])
def test_rejected_transitions(from_status, to_status):
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        OrderStateMachine.validate_transition(from_status, to_status)
    assert exc_info.value.code == "INVALID_STATE_TRANSITION"
    assert exc_info.value.from_status == from_status.value


def test_plain_strings_accepted():
    """Statuses read from the database are plain strings."""
    assert OrderStateMachine.can_transition("pending_payment", "confirmed")
    assert not OrderStateMachine.can_transition("checked_in", "confirmed")


def test_terminal_statuses():
    assert OrderStateMachine.is_terminal(OrderStatus.CHECKED_IN)
    assert OrderStateMachine.is_terminal(OrderStatus.REFUND_REQUIRED)
    assert not OrderStateMachine.is_terminal(OrderStatus.FAILED)


def test_admittable_statuses():
    assert ADMITTABLE_STATUSES == {OrderStatus.CONFIRMED, OrderStatus.RSVP_CONFIRMED, OrderStatus.CHECKED_IN}
    assert OrderStatus.PENDING_PAYMENT not in ADMITTABLE_STATUSES
