"""Order status reconciliation engine.

Both write paths (explicit user actions and provider webhooks) go through
`apply`: read the stored status, decide with the precedence policy, and write
with a compare-and-set guard. A lost race re-reads and decides again, so the
final status is the same whatever order concurrent writers land in.
"""

import asyncio
from typing import Any, Protocol

from sippay.common.config import settings
from sippay.common.logging import logger
from sippay.common.metrics import order_transitions_total
from sippay.common.state_machine import OrderStatus, Transition, decide
from sippay.services.notification.schemas import OrderSummary
from sippay.services.orders.models import Order
from sippay.services.orders.repository import OrderRepository


MAX_APPLY_ATTEMPTS = 3


class ReadyNotifier(Protocol):
    async def notify_order_ready(self, user_id: str, summary: OrderSummary) -> None: ...


class ReconciliationEngine:
    """Owns authoritative status changes and the side effects they trigger."""

    def __init__(
        self,
        repository: OrderRepository,
        notifier: ReadyNotifier | None = None,
        service_name: str | None = None,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.service_name = service_name or settings.service_name
        self._notification_tasks: set[asyncio.Task] = set()

    def _count(self, source: str, outcome: str) -> None:
        order_transitions_total.labels(service=self.service_name, source=source, outcome=outcome).inc()

    async def apply(
        self,
        transaction_id: str,
        incoming: OrderStatus | str,
        source: str,
        reason: str,
        fields: dict[str, Any] | None = None,
    ) -> Transition:
        """Apply one incoming status to the stored order.

        `fields` are written together with the status, and only when the
        transition is accepted. Raises `NotFoundError` for an unknown order.
        """

        for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
            order = self.repository.get(transaction_id)
            transition = decide(order.status, incoming)
            if not transition.accepted:
                logger.info(
                    "transition_skipped transaction_id=%s current=%s incoming=%s reason=%s source=%s",
                    transaction_id,
                    transition.current.value,
                    transition.incoming.value,
                    transition.reason,
                    source,
                )
                self._count(source, transition.reason)
                return transition

            written = self.repository.compare_and_set_status(
                transaction_id,
                expected=order.status,
                new_status=transition.final.value,
                source=source,
                reason=reason,
                fields=fields,
            )
            if written:
                logger.info(
                    "transition_applied transaction_id=%s from=%s to=%s source=%s reason=%s",
                    transaction_id,
                    transition.current.value,
                    transition.final.value,
                    source,
                    reason,
                )
                self._count(source, "accepted")
                if transition.became_ready:
                    self._dispatch_ready(order)
                return transition

            logger.info(
                "transition_conflict transaction_id=%s attempt=%s expected=%s",
                transaction_id,
                attempt,
                order.status,
            )
            self._count(source, "conflict")

        raise RuntimeError(
            f"optimistic concurrency conflict for order {transaction_id} "
            f"after {MAX_APPLY_ATTEMPTS} attempts"
        )

    def _dispatch_ready(self, order: Order) -> None:
        """Start the ready push in the background; the status write has committed."""

        if self.notifier is None:
            return
        if not order.user_id:
            logger.warning("ready_notification_skipped reason=no_user transaction_id=%s", order.transaction_id)
            return
        summary = OrderSummary(
            transaction_id=order.transaction_id,
            order_id=order.order_id,
            status=OrderStatus.READY.value,
            shop_name=order.shop_name,
        )
        task = asyncio.create_task(self._notify(order.user_id, summary))
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    async def _notify(self, user_id: str, summary: OrderSummary) -> None:
        try:
            await self.notifier.notify_order_ready(user_id, summary)
        except Exception:
            logger.exception("ready_notification_failed transaction_id=%s", summary.transaction_id)

    async def drain_notifications(self) -> None:
        """Wait for in-flight ready pushes (shutdown and tests)."""

        while True:
            pending = [task for task in self._notification_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
