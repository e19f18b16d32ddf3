"""Billing error types.

Every error carries the HTTP status it maps to and whether the caller may
retry. ``subledger.main`` registers one exception handler for the base class,
so routes and services raise these directly instead of building
``HTTPException`` instances.
"""

from fastapi import status


class BillingError(Exception):
    """Base class for errors surfaced by the billing core."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False
    default_message: str = "Billing error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        return {
            "detail": self.message,
            "error": type(self).__name__,
            "retryable": self.retryable,
        }


class InvalidPlan(BillingError):
    """Unknown plan or price, or a plan that cannot be purchased."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid plan"


class ProviderError(BillingError):
    """Stripe rejected the request or could not be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True
    default_message = "Payment provider error"


class ProviderTimeout(BillingError):
    """A Stripe call exceeded the configured timeout."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    retryable = True
    default_message = "Payment provider timed out"


class SignatureError(BillingError):
    """Webhook signature missing or invalid. Stripe retries on its own."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid signature"


class NoActiveSubscription(BillingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No active subscription"


class NoBillingCustomer(BillingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No billing customer found. Subscribe first."


class PersistenceError(BillingError):
    """Local write failed; the previously stored record is left untouched."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Could not store subscription state"


class Unauthorized(BillingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"
