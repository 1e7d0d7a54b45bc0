"""Order status vocabulary and the reconciliation transition policy.

Statuses are ranked by specificity. A transition is accepted only when it moves
an order to a strictly more specific status, and terminal statuses are locked.
Because the decision depends only on (current, incoming), two deliveries of
valid events converge to the same final status in either arrival order.
"""

from dataclasses import dataclass
from enum import Enum


class OrderStatus(str, Enum):
    AUTHORIZED = "AUTHORIZED"
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    # Legacy values: readable from old records, never produced by new writes.
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    ACTIVE = "active"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        if isinstance(value, OrderStatus):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls(value.upper())

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_legacy(self) -> bool:
        return self in LEGACY_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})
LEGACY_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.PENDING, OrderStatus.ACTIVE})

SPECIFICITY: dict[OrderStatus, int] = {
    OrderStatus.DRAFT: 0,
    OrderStatus.PENDING: 0,
    OrderStatus.ACTIVE: 0,
    OrderStatus.AUTHORIZED: 1,
    OrderStatus.SUBMITTED: 2,
    OrderStatus.IN_PROGRESS: 3,
    OrderStatus.READY: 4,
    OrderStatus.COMPLETED: 5,
    OrderStatus.CANCELLED: 5,
}


@dataclass(frozen=True)
class Transition:
    """Outcome of evaluating one incoming status against the stored one."""

    current: OrderStatus
    incoming: OrderStatus
    final: OrderStatus
    accepted: bool
    reason: str

    @property
    def became_ready(self) -> bool:
        return self.accepted and self.final is OrderStatus.READY


def decide(current: "str | OrderStatus", incoming: "str | OrderStatus") -> Transition:
    """Evaluate the precedence policy for one (current, incoming) pair."""

    current = OrderStatus.parse(current)
    incoming = OrderStatus.parse(incoming)

    if incoming == current:
        return Transition(current, incoming, current, False, "idempotent")
    if current.is_terminal:
        return Transition(current, incoming, current, False, "terminal_locked")
    if incoming.is_legacy:
        return Transition(current, incoming, current, False, "legacy_status_not_writable")
    if SPECIFICITY[incoming] < SPECIFICITY[current]:
        return Transition(current, incoming, current, False, "less_specific")
    return Transition(current, incoming, incoming, True, "accepted")


def apply_transition(current: "str | OrderStatus", incoming: "str | OrderStatus") -> OrderStatus:
    """Return the status an order ends up in after `incoming` is applied."""

    return decide(current, incoming).final
