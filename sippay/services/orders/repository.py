"""Durable order store: the single source of truth for order status.

All operations touch one order row. Status is only ever changed through
`compare_and_set_status`, which the reconciliation engine and the explicit
user actions drive; plain `update` refuses to write it.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from sippay.common.errors import AlreadyExistsError, NotFoundError
from sippay.common.logging import logger
from sippay.services.orders.models import CloverCredential, MerchantToken, Order, OrderTimeline


def _columns(fields: dict[str, Any]) -> dict:
    """Map attribute-name keys to ORM attributes, rejecting unknown fields."""

    values = {}
    for key, value in fields.items():
        if key not in Order.__mapper__.attrs:
            raise ValueError(f"unknown order field: {key}")
        values[getattr(Order, key)] = value
    return values


class OrderRepository:
    """Order persistence keyed by the provider-assigned transaction id."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(self, transaction_id: str, fields: dict[str, Any], source: str = "placement") -> Order:
        """Insert a new order; fields that are None are dropped before writing."""

        values = {key: value for key, value in fields.items() if value is not None}
        values.pop("transaction_id", None)
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            if db.get(Order, transaction_id) is not None:
                raise AlreadyExistsError(f"order {transaction_id} already exists")
            order = Order(transaction_id=transaction_id, created_at=now, updated_at=now, **values)
            db.add(order)
            db.flush()
            db.add(
                OrderTimeline(
                    transaction_id=transaction_id,
                    from_status=None,
                    to_status=order.status,
                    source=source,
                    reason="order_created",
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise AlreadyExistsError(f"order {transaction_id} already exists") from exc
            return order

    def update(self, transaction_id: str, fields: dict[str, Any]) -> Order:
        """Merge `fields` into the stored order; absent fields are left untouched."""

        if "status" in fields:
            raise ValueError("status is written through compare_and_set_status")
        if "transaction_id" in fields:
            raise ValueError("transaction_id is immutable")
        values = _columns(fields)
        values[Order.updated_at] = datetime.now(timezone.utc)
        with self.session_factory() as db:
            result = db.execute(
                update(Order).where(Order.transaction_id == transaction_id).values(values)
            )
            if result.rowcount != 1:
                db.rollback()
                raise NotFoundError("Order not found")
            db.commit()
            return db.get(Order, transaction_id, populate_existing=True)

    def get(self, transaction_id: str) -> Order:
        with self.session_factory() as db:
            order = db.get(Order, transaction_id)
            if order is None:
                raise NotFoundError("Order not found")
            return order

    def find_by_provider_order_id(self, order_id: str) -> list[Order]:
        """Correlate a provider order id back to the owning order rows."""

        with self.session_factory() as db:
            rows = list(db.execute(select(Order).where(Order.order_id == order_id)).scalars())
        if len(rows) > 1:
            logger.warning(
                "multiple_orders_for_provider_order order_id=%s transaction_ids=%s",
                order_id,
                [row.transaction_id for row in rows],
            )
        return rows

    def delete(self, transaction_id: str) -> None:
        with self.session_factory() as db:
            db.execute(delete(OrderTimeline).where(OrderTimeline.transaction_id == transaction_id))
            db.execute(delete(Order).where(Order.transaction_id == transaction_id))
            db.commit()

    def compare_and_set_status(
        self,
        transaction_id: str,
        expected: str,
        new_status: str,
        source: str,
        reason: str,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Write `new_status` only if the stored status still equals `expected`.

        The status write and its timeline row commit together. Returns False
        when another writer got there first; the caller re-reads and decides
        again.
        """

        values = _columns(fields or {})
        values[Order.status] = new_status
        values[Order.updated_at] = datetime.now(timezone.utc)
        with self.session_factory() as db:
            result = db.execute(
                update(Order)
                .where(Order.transaction_id == transaction_id, Order.status == expected)
                .values(values)
            )
            if result.rowcount != 1:
                db.rollback()
                return False
            db.add(
                OrderTimeline(
                    transaction_id=transaction_id,
                    from_status=expected,
                    to_status=new_status,
                    source=source,
                    reason=reason,
                )
            )
            db.commit()
            return True

    def timeline(self, transaction_id: str) -> list[OrderTimeline]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(OrderTimeline)
                    .where(OrderTimeline.transaction_id == transaction_id)
                    .order_by(OrderTimeline.created_at)
                ).scalars()
            )

    def get_merchant_tokens(self, merchant_id: str) -> MerchantToken | None:
        with self.session_factory() as db:
            return db.get(MerchantToken, merchant_id)

    def save_merchant_tokens(self, merchant_id: str, fields: dict[str, Any]) -> MerchantToken:
        """Insert or replace one merchant's POS credentials."""

        with self.session_factory() as db:
            token = db.get(MerchantToken, merchant_id)
            if token is None:
                token = MerchantToken(merchant_id=merchant_id)
                db.add(token)
            for key, value in fields.items():
                setattr(token, key, value)
            db.commit()
            return token

    def get_clover_credentials(self, merchant_id: str) -> CloverCredential | None:
        with self.session_factory() as db:
            return db.get(CloverCredential, merchant_id)

    def save_clover_credentials(self, merchant_id: str, fields: dict[str, Any]) -> CloverCredential:
        with self.session_factory() as db:
            credential = db.get(CloverCredential, merchant_id)
            if credential is None:
                credential = CloverCredential(merchant_id=merchant_id)
                db.add(credential)
            for key, value in fields.items():
                setattr(credential, key, value)
            db.commit()
            return credential
