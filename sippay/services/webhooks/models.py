"""Square webhook envelope and the tagged events it is normalized into.

Only these typed events leave the parser; raw vendor dictionaries never reach
the reconciliation engine.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


ORDER_UPDATED = "order.updated"
ORDER_FULFILLMENT_UPDATED = "order.fulfillment.updated"
ORDER_CREATED = "order.created"


class SquareEnvelope(BaseModel):
    """Outer shape shared by every Square webhook notification."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    event_id: str | None = None
    merchant_id: str | None = None
    created_at: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


class FulfillmentUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fulfillment_uid: str | None = None
    old_state: str | None = None
    new_state: str | None = None


class OrderStateChanged(BaseModel):
    kind: Literal["order_state_changed"] = "order_state_changed"
    event_id: str | None = None
    order_id: str
    state: str | None = None


class FulfillmentStateChanged(BaseModel):
    kind: Literal["fulfillment_state_changed"] = "fulfillment_state_changed"
    event_id: str | None = None
    order_id: str
    # Latest entry of the update list; None when the event carries no change.
    new_state: str | None = None
    old_state: str | None = None


class OrderCreated(BaseModel):
    kind: Literal["order_created"] = "order_created"
    event_id: str | None = None
    order_id: str | None = None
    state: str | None = None


class IgnoredEvent(BaseModel):
    kind: Literal["ignored"] = "ignored"
    event_id: str | None = None
    event_type: str


WebhookEvent = Annotated[
    Union[OrderStateChanged, FulfillmentStateChanged, OrderCreated, IgnoredEvent],
    Field(discriminator="kind"),
]
