"""Vendor state vocabulary to internal order status tables.

Unknown vendor states map to SUBMITTED, the least specific status a live order
can plausibly be in, so a new vendor value never fails a webhook.
"""

from sippay.common.logging import logger
from sippay.common.state_machine import OrderStatus


ORDER_STATE_MAP: dict[str, OrderStatus] = {
    "OPEN": OrderStatus.SUBMITTED,
    "COMPLETED": OrderStatus.COMPLETED,
    "CANCELED": OrderStatus.CANCELLED,
    "DRAFT": OrderStatus.DRAFT,
}

FULFILLMENT_STATE_MAP: dict[str, OrderStatus] = {
    "PROPOSED": OrderStatus.SUBMITTED,
    "RESERVED": OrderStatus.IN_PROGRESS,
    "PREPARED": OrderStatus.READY,
    "FULFILLED": OrderStatus.COMPLETED,
    "CANCELED": OrderStatus.CANCELLED,
}

STRIPE_INTENT_STATE_MAP: dict[str, OrderStatus] = {
    "requires_capture": OrderStatus.AUTHORIZED,
    "succeeded": OrderStatus.SUBMITTED,
    "canceled": OrderStatus.CANCELLED,
}


def _lookup(table: dict[str, OrderStatus], state: str | None, vocabulary: str) -> OrderStatus:
    status = table.get(state or "")
    if status is None:
        logger.warning("unrecognized_vendor_state vocabulary=%s state=%s", vocabulary, state)
        return OrderStatus.SUBMITTED
    return status


def map_order_state(state: str | None) -> OrderStatus:
    return _lookup(ORDER_STATE_MAP, state, "order")


def map_fulfillment_state(state: str | None) -> OrderStatus:
    return _lookup(FULFILLMENT_STATE_MAP, state, "fulfillment")


def map_stripe_intent_state(state: str | None) -> OrderStatus:
    return _lookup(STRIPE_INTENT_STATE_MAP, state, "stripe_intent")
