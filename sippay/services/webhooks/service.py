"""Square webhook ingress: verify, parse, dedupe, reconcile.

Anomalies (unknown order, unknown event type, event without a state change)
are logged and acknowledged so the provider does not keep retrying something
that will never resolve.
"""

import base64
import hashlib
import hmac
import json

import redis
from pydantic import ValidationError as PydanticValidationError

from sippay.common.config import CommonSettings, settings
from sippay.common.errors import MalformedEventError, NotFoundError, UnauthorizedError
from sippay.common.logging import logger
from sippay.common.metrics import webhook_events_total
from sippay.common.state_machine import OrderStatus
from sippay.services.orders.reconciliation import ReconciliationEngine
from sippay.services.orders.repository import OrderRepository
from sippay.services.provider_adapter.base import PaymentProvider
from sippay.services.provider_adapter.models import StateLevel
from sippay.services.provider_adapter.square_adapter import SquareAdapter
from sippay.services.webhooks.models import (
    ORDER_CREATED,
    ORDER_FULFILLMENT_UPDATED,
    ORDER_UPDATED,
    FulfillmentStateChanged,
    FulfillmentUpdate,
    IgnoredEvent,
    OrderCreated,
    OrderStateChanged,
    SquareEnvelope,
    WebhookEvent,
)


SIGNATURE_HEADER = "x-square-hmacsha256-signature"


def compute_signature(body: bytes, signature_key: str, notification_url: str) -> str:
    """Square's scheme: base64(HMAC-SHA256(key, notification_url + body))."""

    digest = hmac.new(
        signature_key.encode("utf-8"), notification_url.encode("utf-8") + body, hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    body: bytes, signature: str | None, signature_key: str | None, notification_url: str
) -> bool:
    if not signature or not signature_key:
        return False
    expected = compute_signature(body, signature_key, notification_url)
    return hmac.compare_digest(expected, signature)


def parse_event(body: bytes) -> WebhookEvent:
    """Decode a raw Square notification into one tagged event.

    Any shape problem, in the envelope or in the nested payload, is a
    `MalformedEventError`.
    """

    try:
        envelope = SquareEnvelope.model_validate(json.loads(body))
        return _to_event(envelope)
    except (ValueError, TypeError, AttributeError, PydanticValidationError) as exc:
        raise MalformedEventError(f"invalid webhook payload: {exc}") from exc


def _to_event(envelope: SquareEnvelope) -> WebhookEvent:
    obj = envelope.object
    if envelope.type == ORDER_UPDATED:
        payload = obj.get("order_updated") or {}
        if not payload.get("order_id"):
            raise MalformedEventError("order.updated without order_id")
        return OrderStateChanged(
            event_id=envelope.event_id, order_id=payload["order_id"], state=payload.get("state")
        )
    if envelope.type == ORDER_FULFILLMENT_UPDATED:
        payload = obj.get("order_fulfillment_updated") or {}
        if not payload.get("order_id"):
            raise MalformedEventError("order.fulfillment.updated without order_id")
        updates = [FulfillmentUpdate.model_validate(u) for u in payload.get("fulfillment_update") or []]
        latest = updates[-1] if updates else None
        return FulfillmentStateChanged(
            event_id=envelope.event_id,
            order_id=payload["order_id"],
            new_state=latest.new_state if latest else None,
            old_state=latest.old_state if latest else None,
        )
    if envelope.type == ORDER_CREATED:
        payload = obj.get("order_created") or obj.get("order") or {}
        return OrderCreated(
            event_id=envelope.event_id,
            order_id=payload.get("order_id") or payload.get("id"),
            state=payload.get("state"),
        )
    return IgnoredEvent(event_id=envelope.event_id, event_type=envelope.type)


class WebhookService:
    """Turns verified Square notifications into reconciliation engine calls."""

    def __init__(
        self,
        repository: OrderRepository,
        engine: ReconciliationEngine,
        redis_client: redis.Redis | None = None,
        config: CommonSettings = settings,
        mapper: PaymentProvider | None = None,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.redis = redis_client
        self.config = config
        # Vocabulary mapping only; no credentials are needed for it.
        self.mapper = mapper or SquareAdapter(access_token="")

    def _count(self, event_type: str, outcome: str) -> None:
        webhook_events_total.labels(
            service=self.config.service_name, event_type=event_type, outcome=outcome
        ).inc()

    def authenticate(self, body: bytes, signature: str | None, notification_url: str) -> None:
        if not self.config.square_webhook_signature_key:
            logger.error("webhook_rejected reason=signature_key_not_configured")
            raise UnauthorizedError("webhook signature key not configured")
        if not signature:
            raise UnauthorizedError("missing webhook signature")
        if not verify_signature(body, signature, self.config.square_webhook_signature_key, notification_url):
            raise UnauthorizedError("invalid webhook signature")

    def _dedupe_key(self, event_id: str) -> str:
        return f"webhook:square:{event_id}"

    def _seen(self, event_id: str | None) -> bool:
        if not event_id or self.redis is None:
            return False
        try:
            return bool(self.redis.exists(self._dedupe_key(event_id)))
        except redis.RedisError as exc:
            logger.warning("webhook_dedupe_read_failed event_id=%s error=%s", event_id, exc)
            return False

    def _remember(self, event_id: str | None) -> None:
        if not event_id or self.redis is None:
            return
        try:
            self.redis.setex(self._dedupe_key(event_id), self.config.webhook_dedupe_ttl_seconds, "1")
        except redis.RedisError as exc:
            logger.warning("webhook_dedupe_write_failed event_id=%s error=%s", event_id, exc)

    async def handle(self, body: bytes, signature: str | None, notification_url: str) -> str:
        """Process one delivery; returns the outcome label that was recorded."""

        self.authenticate(body, signature, notification_url)
        event = parse_event(body)
        event_type = getattr(event, "event_type", event.kind)
        if self._seen(event.event_id):
            logger.info("webhook_duplicate_skipped event_id=%s", event.event_id)
            self._count(event_type, "duplicate")
            return "duplicate"

        outcome = await self.dispatch(event)
        self._remember(event.event_id)
        self._count(event_type, outcome)
        return outcome

    async def dispatch(self, event: WebhookEvent) -> str:
        if isinstance(event, OrderStateChanged):
            status = self.mapper.map_provider_state(event.state, StateLevel.ORDER)
            return await self._reconcile(event.order_id, status, f"square_order_state:{event.state}")
        if isinstance(event, FulfillmentStateChanged):
            if event.new_state is None:
                logger.info("webhook_no_fulfillment_change order_id=%s", event.order_id)
                return "no_change"
            status = self.mapper.map_provider_state(event.new_state, StateLevel.FULFILLMENT)
            return await self._reconcile(
                event.order_id, status, f"square_fulfillment_state:{event.new_state}"
            )
        if isinstance(event, OrderCreated):
            logger.info("webhook_order_created order_id=%s state=%s", event.order_id, event.state)
            return "logged"
        logger.info("webhook_unhandled_type event_type=%s", event.event_type)
        return "ignored"

    async def _reconcile(self, provider_order_id: str, status: OrderStatus, reason: str) -> str:
        orders = self.repository.find_by_provider_order_id(provider_order_id)
        if not orders:
            logger.warning("webhook_order_not_found order_id=%s", provider_order_id)
            return "unknown_order"
        accepted = False
        missing = 0
        for order in orders:
            try:
                transition = await self.engine.apply(
                    order.transaction_id, status, source="webhook", reason=reason
                )
            except NotFoundError:
                # Deleted between the lookup and the write.
                logger.warning(
                    "webhook_order_vanished order_id=%s transaction_id=%s", provider_order_id, order.transaction_id
                )
                missing += 1
                continue
            accepted = accepted or transition.accepted
        if missing == len(orders):
            return "unknown_order"
        return "applied" if accepted else "no_op"
