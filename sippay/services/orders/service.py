"""Explicit user actions on orders: place, cancel, capture/complete.

Each action calls the provider adapter for the money movement first and only
then writes the order. Status changes go through the reconciliation engine.
A failure after money has moved is never rolled back automatically; it is
logged with `operator_attention=true` for manual reconciliation.
"""

from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from sippay.common.config import CommonSettings, settings
from sippay.common.errors import (
    AlreadyExistsError,
    CaptureFailedError,
    NotFoundError,
    OrderNotCancellableError,
    SipPayError,
    ValidationError,
)
from sippay.common.logging import logger, redact, transaction_id_ctx
from sippay.common.metrics import captures_total, orders_placed_total
from sippay.common.state_machine import OrderStatus, Transition
from sippay.services.orders.capture import CaptureScheduler
from sippay.services.orders.models import Order
from sippay.services.orders.reconciliation import ReconciliationEngine
from sippay.services.orders.repository import OrderRepository
from sippay.services.orders.schemas import (
    ActionResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
)
from sippay.services.provider_adapter.base import PaymentProvider
from sippay.services.provider_adapter.models import (
    Customer,
    FulfillmentIntent,
    LineItem,
    MerchantContext,
    MerchantCredentials,
    PaymentMethod,
    PosType,
)
from sippay.services.provider_adapter.service import ProviderRegistry


FULFILLMENT_NOTES = {
    PaymentMethod.CARD: "Order placed via SipLocal app",
    PaymentMethod.APPLE_PAY: "Paid with Apple Pay via SipLocal app",
    PaymentMethod.EXTERNAL: "Paid externally via SipLocal app",
}


class OrderService:
    """Coordinates adapters, the order store and the capture scheduler."""

    def __init__(
        self,
        repository: OrderRepository,
        engine: ReconciliationEngine,
        providers: ProviderRegistry,
        scheduler: CaptureScheduler,
        config: CommonSettings = settings,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.providers = providers
        self.scheduler = scheduler
        self.config = config

    def _stored_credentials(
        self, merchant_id: str, pos_type: PosType = PosType.SQUARE
    ) -> MerchantCredentials | None:
        if pos_type is PosType.CLOVER:
            clover = self.repository.get_clover_credentials(merchant_id)
            if clover is None:
                return None
            return MerchantCredentials(
                merchant_id=merchant_id,
                pos_type=pos_type,
                oauth_token=clover.access_token,
                pos_merchant_id=clover.clover_merchant_id,
                shop_name=clover.shop_name,
            )
        token = self.repository.get_merchant_tokens(merchant_id)
        if token is None:
            return None
        return MerchantCredentials(
            merchant_id=merchant_id,
            oauth_token=token.oauth_token,
            location_id=token.location_id,
            shop_name=token.shop_name,
        )

    def _order_credentials(self, order: Order) -> MerchantCredentials | None:
        return self._stored_credentials(order.merchant_id, PosType(order.pos_type or PosType.SQUARE.value))

    def _request_credentials(self, req: PlaceOrderRequest) -> MerchantCredentials | None:
        """Client-supplied credentials win; stored credentials fill the gaps."""

        stored = self._stored_credentials(req.merchant_id, req.pos_type)
        supplied = req.provider_credentials
        if supplied is None or not supplied.oauth_token:
            return stored
        return MerchantCredentials(
            merchant_id=req.merchant_id,
            pos_type=req.pos_type,
            oauth_token=supplied.oauth_token,
            location_id=supplied.location_id or (stored.location_id if stored else None),
            pos_merchant_id=supplied.pos_merchant_id or (stored.pos_merchant_id if stored else None),
            shop_name=stored.shop_name if stored else None,
        )

    def _remember_credentials(self, req: PlaceOrderRequest, credentials: MerchantCredentials | None) -> None:
        """Store client-supplied credentials so cancel and capture can resolve them later."""

        supplied = req.provider_credentials
        if credentials is None or supplied is None or not supplied.oauth_token:
            return
        try:
            if credentials.pos_type is PosType.CLOVER:
                fields = {"access_token": credentials.oauth_token}
                if credentials.pos_merchant_id:
                    fields["clover_merchant_id"] = credentials.pos_merchant_id
                self.repository.save_clover_credentials(req.merchant_id, fields)
            else:
                fields = {"oauth_token": credentials.oauth_token}
                if credentials.location_id:
                    fields["location_id"] = credentials.location_id
                self.repository.save_merchant_tokens(req.merchant_id, fields)
        except SQLAlchemyError as exc:
            logger.error(
                "credentials_write_failed operator_attention=true merchant_id=%s error=%s",
                req.merchant_id,
                exc,
            )

    def _merchant_context(self, order: Order) -> MerchantContext:
        return MerchantContext(
            merchant_id=order.merchant_id,
            location_id=order.location_id,
            customer=Customer(**order.customer) if order.customer else None,
            reference=order.transaction_id,
        )

    def _fulfillment(self, order: Order) -> FulfillmentIntent:
        method = PaymentMethod(order.payment_method)
        customer = order.customer or {}
        return FulfillmentIntent(
            recipient_name=customer.get("name") or "Customer",
            recipient_email=customer.get("email"),
            pickup_at=order.pickup_time,
            note=FULFILLMENT_NOTES[method],
            # Card payments settle through Square itself; other paths are recorded as an external tender.
            external_tender_amount=None if method is PaymentMethod.CARD else order.amount,
            currency=order.currency,
        )

    async def _place_merchant_order(self, provider: PaymentProvider, order: Order) -> str | None:
        """Hand the order to the POS; a failure here never undoes the payment."""

        try:
            result = await provider.create_merchant_order(
                [LineItem(**item) for item in order.items or []],
                self._fulfillment(order),
                self._merchant_context(order),
            )
        except SipPayError as exc:
            logger.error(
                "merchant_order_failed operator_attention=true transaction_id=%s error=%s",
                order.transaction_id,
                exc.detail,
            )
            return None
        if result.provider_order_id is None:
            logger.info("merchant_order_not_placed transaction_id=%s", order.transaction_id)
        return result.provider_order_id

    async def place_order(self, req: PlaceOrderRequest) -> PlaceOrderResponse:
        """Authorize, place the merchant order, then record the order."""

        method = req.payment_method
        if method is not PaymentMethod.EXTERNAL and not req.source:
            raise ValidationError("The request must include 'nonce' or 'tokenId'.")
        logger.info("place_order_requested payload=%s", redact(req.model_dump(by_alias=True)))

        currency = (req.currency or self.config.default_currency).upper()
        credentials = self._request_credentials(req)
        provider = self.providers.for_method(method, credentials)
        merchant = MerchantContext(
            merchant_id=req.merchant_id,
            location_id=credentials.location_id if credentials else None,
            customer=req.customer,
        )

        # A decline or provider failure propagates here, before anything is written.
        authorization = await provider.authorize(req.amount, currency, req.source, merchant)
        transaction_id = authorization.provider_transaction_id
        transaction_id_ctx.set(transaction_id)
        self._remember_credentials(req, credentials)

        initial = OrderStatus.SUBMITTED if authorization.captured else OrderStatus.AUTHORIZED
        fields = {
            "status": initial.value,
            "payment_status": "CAPTURED" if authorization.captured else "AUTHORIZED",
            "amount": authorization.amount,
            "currency": authorization.currency,
            "merchant_id": req.merchant_id,
            "location_id": merchant.location_id or authorization.raw.get("location_id"),
            "payment_method": method.value,
            "pos_type": req.pos_type.value,
            "items": [item.model_dump(exclude_none=True) for item in req.items],
            "customer": req.customer.model_dump(exclude_none=True) if req.customer else None,
            "user_id": req.user_id,
            "shop_name": req.shop_name or (credentials.shop_name if credentials else None),
            "pickup_time": req.pickup_time,
            "receipt_url": authorization.receipt_url,
            "receipt_number": authorization.receipt_number,
            "captured_at": datetime.now(timezone.utc) if authorization.captured else None,
        }

        # Authorize-only payments get their merchant order at capture time.
        if authorization.captured:
            draft = Order(transaction_id=transaction_id, **fields)
            fields["order_id"] = await self._place_merchant_order(provider, draft)

        outcome = self._record_order(transaction_id, fields)
        orders_placed_total.labels(service=self.config.service_name, payment_method=method.value).inc()
        if outcome == "recorded" and not authorization.captured:
            self.scheduler.arm(transaction_id, self.capture_order)

        logger.info(
            "order_placed transaction_id=%s status=%s order_id=%s",
            transaction_id,
            initial.value,
            fields.get("order_id"),
        )
        return PlaceOrderResponse(
            transaction_id=transaction_id,
            order_id=fields.get("order_id"),
            status=initial.value,
            amount=authorization.amount,
            currency=authorization.currency,
            receipt_url=authorization.receipt_url,
            receipt_number=authorization.receipt_number,
        )

    def _record_order(self, transaction_id: str, fields: dict) -> str:
        """Write the new order; returns "recorded", "exists" or "failed"."""

        try:
            self.repository.create(transaction_id, fields)
        except AlreadyExistsError:
            # The existing row keeps its own status and any timer already armed for it.
            logger.warning("order_already_recorded transaction_id=%s", transaction_id)
            return "exists"
        except SQLAlchemyError as exc:
            logger.error(
                "order_write_failed operator_attention=true transaction_id=%s error=%s",
                transaction_id,
                exc,
            )
            return "failed"
        return "recorded"

    async def cancel_order(self, payment_id: str) -> ActionResponse:
        """Stop any pending capture, void/refund the payment, then mark CANCELLED."""

        transaction_id_ctx.set(payment_id)
        self.repository.get(payment_id)
        await self.scheduler.cancel(payment_id)
        # Re-read: a capture that was already firing may have moved the order.
        order = self.repository.get(payment_id)
        status = order.order_status
        if status is OrderStatus.CANCELLED:
            return ActionResponse(message="Order already cancelled")
        if status is OrderStatus.COMPLETED:
            raise OrderNotCancellableError(f"order {payment_id} is {status.value}")

        provider = self.providers.for_method(order.payment_method, self._order_credentials(order))
        # CancellationFailedError propagates with the order untouched, so the call can be retried.
        refund = await provider.cancel_or_refund(payment_id)
        fields = {
            "payment_status": "REFUNDED" if refund.refund_id else "CANCELED",
            "cancelled_at": datetime.now(timezone.utc),
        }
        transition = await self.engine.apply(
            payment_id, OrderStatus.CANCELLED, source="user", reason="user_cancelled", fields=fields
        )
        if not transition.accepted and transition.final is not OrderStatus.CANCELLED:
            logger.error(
                "cancel_lost_race operator_attention=true transaction_id=%s final=%s refund_id=%s",
                payment_id,
                transition.final.value,
                refund.refund_id,
            )

        if order.order_id:
            try:
                await provider.cancel_merchant_order(order.order_id, self._merchant_context(order))
            except SipPayError as exc:
                logger.error(
                    "merchant_order_cancel_failed transaction_id=%s order_id=%s error=%s",
                    payment_id,
                    order.order_id,
                    exc.detail,
                )
        logger.info("order_cancelled transaction_id=%s refund_id=%s", payment_id, refund.refund_id)
        return ActionResponse(message="Order cancelled successfully")

    async def capture_order(self, transaction_id: str) -> Transition | None:
        """Capture an AUTHORIZED payment and submit the order to the merchant.

        Orders past AUTHORIZED are left alone, which makes repeated captures
        safe. On failure the status is unchanged and the error is recorded.
        """

        transaction_id_ctx.set(transaction_id)
        order = self.repository.get(transaction_id)
        if order.order_status is not OrderStatus.AUTHORIZED:
            logger.info("capture_skipped transaction_id=%s status=%s", transaction_id, order.status)
            captures_total.labels(service=self.config.service_name, outcome="skipped").inc()
            return None

        provider = self.providers.for_method(order.payment_method, self._order_credentials(order))
        try:
            result = await provider.capture(transaction_id)
        except CaptureFailedError as exc:
            logger.error("capture_failed transaction_id=%s error=%s", transaction_id, exc.detail)
            captures_total.labels(service=self.config.service_name, outcome="failed").inc()
            self.repository.update(
                transaction_id, {"payment_status": "CAPTURE_FAILED", "last_error": exc.detail}
            )
            raise
        outcome = "already_captured" if result.already_captured else "captured"
        captures_total.labels(service=self.config.service_name, outcome=outcome).inc()

        fields = {
            "payment_status": "CAPTURED",
            "captured_at": datetime.now(timezone.utc),
            "last_error": None,
        }
        if result.receipt_url:
            fields["receipt_url"] = result.receipt_url
        if not order.order_id:
            provider_order_id = await self._place_merchant_order(provider, order)
            if provider_order_id:
                fields["order_id"] = provider_order_id
        self.repository.update(transaction_id, fields)
        return await self.engine.apply(
            transaction_id, result.status, source="capture", reason="payment_captured"
        )

    async def complete_order(self, payment_id: str) -> ActionResponse:
        """Capture now instead of waiting for the timer."""

        await self.scheduler.cancel(payment_id)
        await self.capture_order(payment_id)
        return ActionResponse(message="Order completed successfully")

    def get_order(self, transaction_id: str) -> dict:
        return self.repository.get(transaction_id).to_document()

    def get_merchant_tokens(self, merchant_id: str | None) -> dict:
        if not merchant_id:
            raise ValidationError("merchantId is required")
        token = self.repository.get_merchant_tokens(merchant_id)
        if token is None:
            logger.warning("merchant_tokens_not_found merchant_id=%s", merchant_id)
            raise NotFoundError("Merchant tokens not found")
        tokens = token.to_tokens()
        logger.info("merchant_tokens_retrieved merchant_id=%s tokens=%s", merchant_id, redact(tokens))
        return tokens

    def get_clover_credentials(self, merchant_id: str | None) -> dict:
        if not merchant_id:
            raise ValidationError("merchantId is required")
        credential = self.repository.get_clover_credentials(merchant_id)
        if credential is None:
            logger.warning("clover_credentials_not_found merchant_id=%s", merchant_id)
            raise NotFoundError("Clover credentials not found")
        credentials = credential.to_credentials()
        logger.info("clover_credentials_retrieved merchant_id=%s credentials=%s", merchant_id, redact(credentials))
        return credentials
