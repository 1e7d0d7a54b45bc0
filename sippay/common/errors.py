"""Typed failures surfaced by adapters, the repository and the order handlers.

Every error carries an HTTP status, a stable machine code and a sanitized
message that is safe to show a customer. `detail` holds the internal reason and
is only ever logged.
"""

from enum import Enum


class SipPayError(Exception):
    """Base class for all errors handlers translate into an API response."""

    status_code: int = 500
    code: str = "internal"
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, detail: str = "", public_message: str | None = None) -> None:
        super().__init__(detail or self.default_message)
        self.detail = detail
        self.public_message = public_message or self.default_message

    def to_response(self) -> dict:
        return {"success": False, "error": {"code": self.code, "message": self.public_message}}


class ValidationError(SipPayError):
    status_code = 400
    code = "invalid-argument"
    default_message = "The request is missing required fields."

    def __init__(self, detail: str) -> None:
        # Validation messages are client-actionable, so they are shown as-is.
        super().__init__(detail, public_message=detail)


class MalformedEventError(SipPayError):
    status_code = 400
    code = "malformed-event"
    default_message = "Invalid webhook data."


class UnauthorizedError(SipPayError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Unauthorized"


class NotFoundError(SipPayError):
    status_code = 404
    code = "not-found"
    default_message = "Not found."

    def __init__(self, detail: str) -> None:
        super().__init__(detail, public_message=detail)


class AlreadyExistsError(SipPayError):
    status_code = 409
    code = "already-exists"
    default_message = "Record already exists."


class OrderNotCancellableError(SipPayError):
    status_code = 409
    code = "failed-precondition"
    default_message = "This order can no longer be cancelled."


class ConfigurationError(SipPayError):
    status_code = 503
    code = "failed-precondition"
    default_message = "Payments are temporarily unavailable."


class DeclineReason(str, Enum):
    """Closed set of decline causes every provider is normalized into."""

    CARD_DECLINED = "CARD_DECLINED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    CVV_FAILURE = "CVV_FAILURE"
    ADDRESS_VERIFICATION_FAILURE = "ADDRESS_VERIFICATION_FAILURE"
    GENERIC_DECLINE = "GENERIC_DECLINE"


DECLINE_MESSAGES: dict[DeclineReason, str] = {
    DeclineReason.CARD_DECLINED: "Card was declined. Please try a different payment method.",
    DeclineReason.INSUFFICIENT_FUNDS: "Insufficient funds. Please try a different payment method.",
    DeclineReason.CVV_FAILURE: "CVV verification failed. Please check your card details.",
    DeclineReason.ADDRESS_VERIFICATION_FAILURE: "Address verification failed. Please check your billing address.",
    DeclineReason.GENERIC_DECLINE: "Payment failed. Please try again.",
}


class DeclinedError(SipPayError):
    status_code = 402
    code = "payment-declined"

    def __init__(self, reason: DeclineReason, detail: str = "") -> None:
        super().__init__(detail or reason.value, public_message=DECLINE_MESSAGES[reason])
        self.reason = reason


class ProviderError(SipPayError):
    status_code = 502
    code = "provider-unavailable"
    default_message = "Payment failed. Please try again."


class CaptureFailedError(SipPayError):
    status_code = 502
    code = "capture-failed"
    default_message = "Payment could not be completed. Please try again."

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationFailedError(SipPayError):
    status_code = 502
    code = "cancellation-failed"
    default_message = "Failed to cancel order. Please try again."
