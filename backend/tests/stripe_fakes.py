"""Stripe-shaped payload builders and an in-memory provider client for tests."""

import hashlib
import hmac
import json
import time
import uuid
from typing import Any

from subledger.auth.jwt import create_access_token
from subledger.billing.provider_types import (
    CheckoutSessionDetails,
    CheckoutSessionResult,
    PortalSessionResult,
    ProviderCustomer,
    ProviderSubscription,
)
from subledger.billing.stripe_client import BillingProviderClient

PERIOD_START = 1_700_000_000
PERIOD_END = 1_702_592_000
WEBHOOK_SECRET = "whsec_test_secret"


# ---------------------------------------------------------------------------
# Stripe-shaped payload builders
# ---------------------------------------------------------------------------


def make_stripe_sub(
    sub_id: str = "sub_test_123",
    customer: str = "cus_test_123",
    price_id: str = "price_test_pro",
    status: str = "active",
    period_start: int = PERIOD_START,
    period_end: int = PERIOD_END,
    cancel_at_period_end: bool = False,
    created: int | None = None,
    canceled_at: int | None = None,
    ended_at: int | None = None,
    start_date: int | None = None,
) -> dict[str, Any]:
    """A Stripe Subscription payload (API 2025-08-27 basil: periods on the item)."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "start_date": start_date if start_date is not None else period_start,
        "created": created if created is not None else period_start,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": canceled_at,
        "ended_at": ended_at,
        "items": {
            "object": "list",
            "data": [
                {
                    "id": f"si_{sub_id}",
                    "price": {"id": price_id, "object": "price"},
                    "current_period_start": period_start,
                    "current_period_end": period_end,
                }
            ],
        },
    }


def make_event(event_type: str, data_object: dict[str, Any], created: int = PERIOD_START) -> dict[str, Any]:
    return {
        "id": f"evt_test_{uuid.uuid4().hex[:8]}",
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": data_object},
    }


def dump_event(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode()


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs webhook deliveries."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def auth_headers_for(user_id: uuid.UUID, email: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), email)}"}


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeBillingClient(BillingProviderClient):
    """In-memory Stripe stand-in.

    Network operations work on plain dicts shaped like Stripe objects and go
    through the same ``from_stripe`` parsing as real responses. Webhook
    signature verification is inherited unchanged.
    """

    def __init__(self) -> None:
        super().__init__(api_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET, timeout=1.0)
        self.customers: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail_with is not None:
            raise self.fail_with

    def add_subscription(self, **kwargs) -> dict[str, Any]:
        sub = make_stripe_sub(**kwargs)
        self.subscriptions[sub["id"]] = sub
        return sub

    async def create_customer(self, email, name, metadata=None):
        self._record("create_customer")
        customer_id = f"cus_fake_{len(self.customers) + 1}"
        self.customers[customer_id] = {"id": customer_id, "email": email, "name": name, "metadata": metadata or {}}
        return ProviderCustomer.from_stripe(self.customers[customer_id])

    async def update_customer(self, customer_id, email=None, name=None):
        self._record("update_customer")
        customer = self.customers.setdefault(customer_id, {"id": customer_id, "email": None, "name": None})
        if email is not None:
            customer["email"] = email
        if name is not None:
            customer["name"] = name
        return ProviderCustomer.from_stripe(customer)

    async def create_checkout_session(self, customer_id, price_id, success_url, cancel_url):
        self._record("create_checkout_session")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {
            "id": session_id,
            "customer": customer_id,
            "price_id": price_id,
            "status": "open",
            "payment_status": "unpaid",
            "subscription": None,
        }
        return CheckoutSessionResult(session_id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    def complete_session(self, session_id: str, sub_id: str = "sub_checkout_1") -> dict[str, Any]:
        """Simulate the customer paying: attach a new active subscription to the session."""
        session = self.sessions[session_id]
        sub = self.add_subscription(sub_id=sub_id, customer=session["customer"], price_id=session["price_id"])
        session.update(status="complete", payment_status="paid", subscription=sub)
        return sub

    async def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session")
        return CheckoutSessionDetails.from_stripe(self.sessions[session_id])

    async def create_portal_session(self, customer_id, return_url):
        self._record("create_portal_session")
        return PortalSessionResult(url=f"https://billing.stripe.com/p/session/{customer_id}")

    async def get_subscription(self, subscription_id):
        self._record("get_subscription")
        return ProviderSubscription.from_stripe(self.subscriptions[subscription_id])

    async def list_customer_subscriptions(self, customer_id, status="all"):
        self._record("list_customer_subscriptions")
        return [
            ProviderSubscription.from_stripe(s)
            for s in self.subscriptions.values()
            if s["customer"] == customer_id
        ]

    async def update_subscription(self, subscription_id, new_price_id):
        self._record("update_subscription")
        sub = self.subscriptions[subscription_id]
        sub["items"]["data"][0]["price"] = {"id": new_price_id, "object": "price"}
        return ProviderSubscription.from_stripe(sub)

    async def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription")
        sub = self.subscriptions[subscription_id]
        sub["cancel_at_period_end"] = True
        return ProviderSubscription.from_stripe(sub)

