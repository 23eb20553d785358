"""
Order lifecycle transitions.

All order status writes go through guarded UPDATE statements
(`WHERE status = :expected`); this table decides which of those writes are
legal in the first place.
"""

from enum import Enum

from gatehouse.core.errors import InvalidStateTransitionError


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    RSVP_CONFIRMED = "rsvp_confirmed"
    CHECKED_IN = "checked_in"
    REFUND_REQUIRED = "refund_required"


# Statuses that let a ticket holder through the door
ADMITTABLE_STATUSES = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.RSVP_CONFIRMED,
    OrderStatus.CHECKED_IN,
})

# Statuses for which payment confirmation is a successful no-op
SETTLED_STATUSES = ADMITTABLE_STATUSES


class OrderStateMachine:
    _ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
        OrderStatus.PENDING_PAYMENT: {
            OrderStatus.CONFIRMED,
            OrderStatus.FAILED,
        },
        # Late payment after the sweeper gave up on the order
        OrderStatus.FAILED: {
            OrderStatus.CONFIRMED,
            OrderStatus.REFUND_REQUIRED,
        },
        OrderStatus.CONFIRMED: {OrderStatus.CHECKED_IN},
        OrderStatus.RSVP_CONFIRMED: {OrderStatus.CHECKED_IN},
        OrderStatus.CHECKED_IN: set(),
        OrderStatus.REFUND_REQUIRED: set(),
    }

    @classmethod
    def can_transition(cls, from_status: OrderStatus, to_status: OrderStatus) -> bool:
        return OrderStatus(to_status) in cls._ALLOWED_TRANSITIONS[OrderStatus(from_status)]

    @classmethod
    def validate_transition(cls, from_status: OrderStatus, to_status: OrderStatus) -> None:
        """Raise InvalidStateTransitionError if the move is not allowed."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_status=OrderStatus(from_status).value,
                to_status=OrderStatus(to_status).value,
            )

    @classmethod
    def is_terminal(cls, status: OrderStatus) -> bool:
        return not cls._ALLOWED_TRANSITIONS[OrderStatus(status)]
