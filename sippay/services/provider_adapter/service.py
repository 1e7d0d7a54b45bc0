"""Pick the payment provider adapter for an order's payment method."""

import httpx

from sippay.common.config import CommonSettings, require_config_value, settings
from sippay.common.errors import NotFoundError, ValidationError
from sippay.services.provider_adapter.base import OrderDesk, PaymentProvider
from sippay.services.provider_adapter.clover_adapter import CloverOrderDesk
from sippay.services.provider_adapter.external_adapter import ExternalPaymentAdapter
from sippay.services.provider_adapter.models import MerchantCredentials, PaymentMethod, PosType
from sippay.services.provider_adapter.square_adapter import SquareAdapter
from sippay.services.provider_adapter.stripe_adapter import StripeAdapter


class ProviderRegistry:
    """Builds adapters bound to one merchant's credentials.

    card      -> Square (payment and POS order); Square shops only
    apple_pay -> Stripe for money, the shop's POS for the order when credentials exist
    external  -> no money movement, the shop's POS for the order when credentials exist
    """

    def __init__(
        self,
        config: CommonSettings = settings,
        square_transport: httpx.AsyncBaseTransport | None = None,
        clover_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.square_transport = square_transport
        self.clover_transport = clover_transport

    def _square(self, credentials: MerchantCredentials | None) -> SquareAdapter | None:
        if credentials is None or not credentials.oauth_token:
            return None
        return SquareAdapter(
            access_token=credentials.oauth_token,
            environment=self.config.square_env_name,
            location_id=credentials.location_id,
            autocomplete=self.config.square_autocomplete,
            transport=self.square_transport,
        )

    def _clover(self, credentials: MerchantCredentials | None) -> CloverOrderDesk | None:
        if credentials is None or not credentials.oauth_token:
            return None
        return CloverOrderDesk(
            access_token=credentials.oauth_token,
            clover_merchant_id=credentials.pos_merchant_id or credentials.merchant_id,
            environment=self.config.clover_env_name,
            transport=self.clover_transport,
        )

    def order_desk(self, credentials: MerchantCredentials | None) -> OrderDesk | None:
        if credentials is not None and credentials.pos_type is PosType.CLOVER:
            return self._clover(credentials)
        return self._square(credentials)

    def for_method(
        self, method: PaymentMethod | str, credentials: MerchantCredentials | None
    ) -> PaymentProvider:
        method = PaymentMethod(method)
        if method is PaymentMethod.CARD:
            if credentials is not None and credentials.pos_type is PosType.CLOVER:
                raise ValidationError("Card payments are not available for Clover shops")
            square = self._square(credentials)
            if square is None:
                raise NotFoundError("Merchant tokens not found")
            return square
        desk = self.order_desk(credentials)
        if method is PaymentMethod.APPLE_PAY:
            secret_key = require_config_value(self.config.stripe_secret_key, "STRIPE_SECRET_KEY")
            return StripeAdapter(secret_key=secret_key, order_desk=desk)
        return ExternalPaymentAdapter(order_desk=desk)
