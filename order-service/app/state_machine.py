"""Order lifecycle.

    PENDING_PAYMENT -> PAID -> PREPARING -> ON_THE_WAY -> DELIVERED
    PENDING_PAYMENT -> PAYMENT_FAILED

There is no cancellation transition.
"""
import enum

from .errors import InvalidState


class OrderStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PREPARING = "PREPARING"
    ON_THE_WAY = "ON_THE_WAY"
    DELIVERED = "DELIVERED"


TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.PAYMENT_FAILED}),
    OrderStatus.PAID: frozenset({OrderStatus.PREPARING}),
    OrderStatus.PREPARING: frozenset({OrderStatus.ON_THE_WAY}),
    OrderStatus.ON_THE_WAY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

PAYMENT_SUCCESS = "SUCCESS"


def can_transition(src, dst) -> bool:
    return OrderStatus(dst) in TRANSITIONS[OrderStatus(src)]


def ensure_transition(src, dst) -> None:
    if not can_transition(src, dst):
        raise InvalidState(
            f"Cannot move order from {OrderStatus(src).value} to {OrderStatus(dst).value}",
            current_status=OrderStatus(src).value,
        )


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES
