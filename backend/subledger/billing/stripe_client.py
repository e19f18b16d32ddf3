"""Async Stripe API wrapper for Subledger.

``BillingProviderClient`` is built once per process (see ``subledger.main``)
and handed to the reconciler and webhook handlers explicitly. Every call is
bounded by ``provider_timeout_seconds`` and Stripe SDK errors are translated
into the billing error taxonomy.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import stripe
from fastapi import Request
from stripe import StripeClient

from subledger.billing.errors import InvalidPlan, ProviderError, ProviderTimeout, SignatureError
from subledger.billing.provider_types import (
    CheckoutSessionDetails,
    CheckoutSessionResult,
    PortalSessionResult,
    ProviderCustomer,
    ProviderSubscription,
)
from subledger.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_missing_price(error: stripe.StripeError) -> bool:
    """True when Stripe reports that the referenced price does not exist."""
    if not isinstance(error, stripe.InvalidRequestError):
        return False
    return error.code == "resource_missing" and "price" in (error.param or "")


class BillingProviderClient:
    """Thin async facade over ``stripe.StripeClient``."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout: float = 10.0,
        stripe_client: StripeClient | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self._stripe = stripe_client or StripeClient(
            api_key,
            http_client=stripe.HTTPXClient(timeout=timeout),
            max_network_retries=0,
        )

    @classmethod
    def from_settings(cls) -> "BillingProviderClient":
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout=settings.provider_timeout_seconds,
        )

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a Stripe call with the configured timeout and error mapping."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TimeoutError as e:
            logger.error("Stripe %s timed out after %.1fs", operation, self.timeout)
            raise ProviderTimeout(f"Stripe {operation} timed out") from e
        except stripe.StripeError as e:
            if _is_missing_price(e):
                raise InvalidPlan(f"Unknown price: {e.user_message or e.param}") from e
            logger.error("Stripe %s failed: %s", operation, e.user_message or type(e).__name__)
            raise ProviderError(e.user_message or f"Stripe {operation} failed") from e

    # -- customers ---------------------------------------------------------

    async def create_customer(
        self, email: str, name: str, metadata: dict[str, str] | None = None
    ) -> ProviderCustomer:
        """Create a Stripe customer. Callers guard against duplicates."""
        logger.info("Creating Stripe customer for %s", email)
        customer = await self._call(
            "create_customer",
            self._stripe.v1.customers.create_async(
                params={"email": email, "name": name, "metadata": metadata or {}}
            ),
        )
        logger.info("Created Stripe customer %s", customer.id)
        return ProviderCustomer.from_stripe(customer)

    async def update_customer(
        self, customer_id: str, email: str | None = None, name: str | None = None
    ) -> ProviderCustomer:
        params: dict[str, Any] = {}
        if email is not None:
            params["email"] = email
        if name is not None:
            params["name"] = name
        customer = await self._call(
            "update_customer",
            self._stripe.v1.customers.update_async(customer_id, params=params),
        )
        return ProviderCustomer.from_stripe(customer)

    # -- checkout & portal -------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        """Create a Stripe Checkout Session for a subscription purchase."""
        logger.info("Creating checkout session for customer %s, price %s", customer_id, price_id)
        session = await self._call(
            "create_checkout_session",
            self._stripe.v1.checkout.sessions.create_async(
                params={
                    "mode": "subscription",
                    "customer": customer_id,
                    "payment_method_types": ["card"],
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                }
            ),
        )
        if not session.url:
            raise ProviderError("Stripe returned a checkout session without a URL")
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionDetails:
        session = await self._call(
            "retrieve_checkout_session",
            self._stripe.v1.checkout.sessions.retrieve_async(
                session_id, params={"expand": ["subscription"]}
            ),
        )
        return CheckoutSessionDetails.from_stripe(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSessionResult:
        """Create a Stripe Customer Portal session for subscription management."""
        logger.info("Creating portal session for customer %s", customer_id)
        session = await self._call(
            "create_portal_session",
            self._stripe.v1.billing_portal.sessions.create_async(
                params={"customer": customer_id, "return_url": return_url}
            ),
        )
        return PortalSessionResult(url=session.url)

    # -- subscriptions -----------------------------------------------------

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Retrieve a Stripe subscription by ID."""
        stripe_sub = await self._call(
            "get_subscription",
            self._stripe.v1.subscriptions.retrieve_async(subscription_id),
        )
        return ProviderSubscription.from_stripe(stripe_sub)

    async def list_customer_subscriptions(
        self, customer_id: str, status: str = "all"
    ) -> list[ProviderSubscription]:
        result = await self._call(
            "list_customer_subscriptions",
            self._stripe.v1.subscriptions.list_async(
                params={"customer": customer_id, "status": status, "limit": 100}
            ),
        )
        return [ProviderSubscription.from_stripe(s) for s in result.data]

    async def update_subscription(self, subscription_id: str, new_price_id: str) -> ProviderSubscription:
        """Swap the single line-item price, prorating and keeping payment pending if incomplete."""
        current = await self.get_subscription(subscription_id)
        if current.item_id is None:
            raise ProviderError(f"Subscription {subscription_id} has no line items")

        logger.info("Updating subscription %s to price %s", subscription_id, new_price_id)
        stripe_sub = await self._call(
            "update_subscription",
            self._stripe.v1.subscriptions.update_async(
                subscription_id,
                params={
                    "items": [{"id": current.item_id, "price": new_price_id}],
                    "proration_behavior": "create_prorations",
                    "payment_behavior": "pending_if_incomplete",
                },
            ),
        )
        return ProviderSubscription.from_stripe(stripe_sub)

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Cancel at period end; the subscription stays active until then."""
        logger.info("Scheduling cancellation of subscription %s at period end", subscription_id)
        stripe_sub = await self._call(
            "cancel_subscription",
            self._stripe.v1.subscriptions.update_async(
                subscription_id, params={"cancel_at_period_end": True}
            ),
        )
        return ProviderSubscription.from_stripe(stripe_sub)

    # -- webhooks ----------------------------------------------------------

    def verify_webhook_signature(self, payload: bytes, sig_header: str | None) -> stripe.Event:
        """Verify and construct a Stripe webhook event (synchronous).

        Fails closed: any verification or parsing problem raises SignatureError.
        """
        if not sig_header:
            raise SignatureError("No signature provided")
        if not self.webhook_secret:
            logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise SignatureError("Webhook secret not configured")
        try:
            return self._stripe.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureError("Invalid signature") from e
        except ValueError as e:
            raise SignatureError("Invalid payload") from e


def get_billing_client(request: Request) -> BillingProviderClient:
    """FastAPI dependency: the process-wide client created in the app lifespan."""
    return request.app.state.billing_client
