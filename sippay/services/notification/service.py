"""Best-effort "order ready" push dispatch through OneSignal.

Nothing raised here ever reaches the caller: a failed push is logged and
counted, never allowed to affect the order write that triggered it.
"""

import httpx
from sqlalchemy import select

from sippay.common.config import CommonSettings, settings
from sippay.common.logging import logger
from sippay.common.metrics import notifications_total
from sippay.services.notification.models import UserDevice
from sippay.services.notification.schemas import OrderSummary


ONESIGNAL_NOTIFICATIONS_URL = "https://onesignal.com/api/v1/notifications"
DEFAULT_SHOP_NAME = "Coffee Shop"


class NotificationService:
    """Resolves a user's devices and sends one push per ready order."""

    def __init__(
        self,
        session_factory,
        config: CommonSettings = settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.transport = transport

    def _count(self, outcome: str) -> None:
        notifications_total.labels(service=self.config.service_name, outcome=outcome).inc()

    def register_device(self, user_id: str, device_id: str) -> None:
        with self.session_factory() as db:
            if db.get(UserDevice, (user_id, device_id)) is None:
                db.add(UserDevice(user_id=user_id, device_id=device_id))
                db.commit()

    def device_ids(self, user_id: str) -> list[str]:
        with self.session_factory() as db:
            return list(
                db.execute(select(UserDevice.device_id).where(UserDevice.user_id == user_id)).scalars()
            )

    def build_payload(self, device_ids: list[str], summary: OrderSummary) -> dict:
        shop_name = summary.shop_name or DEFAULT_SHOP_NAME
        return {
            "app_id": self.config.onesignal_app_id,
            "include_player_ids": device_ids,
            "headings": {"en": "Order Ready for Pickup!"},
            "contents": {"en": f"Your order from {shop_name} is ready for pickup!"},
            "data": {
                "orderId": summary.transaction_id,
                "status": summary.status,
                "shopName": shop_name,
            },
        }

    async def notify_order_ready(self, user_id: str, summary: OrderSummary) -> None:
        """Send the ready push; every failure is swallowed and logged."""

        if not self.config.onesignal_app_id or not self.config.onesignal_api_key:
            logger.warning("notification_skipped reason=onesignal_not_configured user_id=%s", user_id)
            self._count("skipped")
            return
        try:
            device_ids = self.device_ids(user_id)
            if not device_ids:
                logger.warning("notification_skipped reason=no_devices user_id=%s", user_id)
                self._count("skipped")
                return
            async with httpx.AsyncClient(
                timeout=self.config.provider_timeout_seconds, transport=self.transport
            ) as client:
                resp = await client.post(
                    ONESIGNAL_NOTIFICATIONS_URL,
                    json=self.build_payload(device_ids, summary),
                    headers={"Authorization": f"Basic {self.config.onesignal_api_key}"},
                )
                resp.raise_for_status()
            logger.info(
                "notification_sent user_id=%s devices=%s transaction_id=%s",
                user_id,
                len(device_ids),
                summary.transaction_id,
            )
            self._count("sent")
        except Exception as exc:
            logger.error(
                "notification_failed user_id=%s transaction_id=%s error=%s",
                user_id,
                summary.transaction_id,
                exc,
            )
            self._count("failed")
