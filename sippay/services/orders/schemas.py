"""API request/response schemas for order endpoints.

Wire names are camelCase, matching the mobile clients and stored documents.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sippay.services.provider_adapter.models import Customer, LineItem, PaymentMethod, PosType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProviderCredentials(CamelModel):
    """POS credentials a client may send along; stored tokens are the fallback.

    Square shops send `oauthToken`, Clover shops `accessToken` plus their
    Clover `merchantId`. Accepted credentials are remembered for later
    cancel and capture calls.
    """

    oauth_token: str | None = Field(
        default=None, validation_alias=AliasChoices("oauth_token", "oauthToken", "accessToken")
    )
    location_id: str | None = None
    pos_merchant_id: str | None = Field(
        default=None, validation_alias=AliasChoices("pos_merchant_id", "posMerchantId", "merchantId")
    )


class PlaceOrderRequest(CamelModel):
    """Create-order/payment payload."""

    nonce: str | None = None
    token_id: str | None = None
    amount: int = Field(gt=0)
    merchant_id: str = Field(min_length=1)
    provider_credentials: ProviderCredentials | None = None
    items: list[LineItem] = Field(default_factory=list)
    customer: Customer | None = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    pos_type: PosType = PosType.SQUARE
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    user_id: str | None = None
    shop_name: str | None = None
    pickup_time: str | None = None

    @property
    def source(self) -> str | None:
        """Payment source: a Square card nonce or a Stripe token id."""

        return self.nonce or self.token_id


class PlaceOrderResponse(CamelModel):
    success: bool = True
    transaction_id: str
    order_id: str | None = None
    status: str
    amount: int
    currency: str
    receipt_url: str | None = None
    receipt_number: str | None = None


class PaymentIdRequest(CamelModel):
    """Cancel / complete payload."""

    payment_id: str = Field(min_length=1)


class ActionResponse(BaseModel):
    success: bool = True
    message: str


class MerchantTokensRequest(CamelModel):
    merchant_id: str | None = None


class MerchantTokensResponse(BaseModel):
    tokens: dict


class CloverCredentialsResponse(BaseModel):
    credentials: dict
