"""Shapes handed to and accepted by the notification service."""

from pydantic import BaseModel, Field


class OrderSummary(BaseModel):
    """What a ready-for-pickup push needs to know about the order."""

    transaction_id: str
    order_id: str | None = None
    status: str = "READY"
    shop_name: str | None = None


class DeviceRegistrationRequest(BaseModel):
    userId: str = Field(min_length=1)
    deviceId: str = Field(min_length=1)
