"""Normalized views of Stripe objects used by the reconciler and webhooks.

Stripe objects are ``dict`` subclasses, so every constructor here reads them
through the mapping protocol. That keeps the parsing identical for SDK
objects, webhook payloads and plain dicts in tests.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from subledger.models.subscription import SubscriptionStatus

logger = logging.getLogger(__name__)

# Stripe statuses outside the local set, folded onto the closest one
STATUS_ALIASES: dict[str, SubscriptionStatus] = {
    "paused": SubscriptionStatus.INCOMPLETE,
}


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def id_of(value: Any) -> str | None:
    """Stripe fields may hold an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", None)


def parse_status(value: str | None) -> SubscriptionStatus:
    """Map a Stripe status onto the local set; unknown values never grant access."""
    if not value:
        return SubscriptionStatus.INCOMPLETE
    try:
        return SubscriptionStatus(value)
    except ValueError:
        pass
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    logger.warning("Unknown Stripe subscription status %r, treating as incomplete", value)
    return SubscriptionStatus.INCOMPLETE


def _first_item(stripe_sub: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """First subscription item, read with bracket notation.

    ``stripe_sub.items`` would resolve to ``dict.items`` on SDK objects.
    """
    sub_items = stripe_sub.get("items")
    if not sub_items:
        return None
    data = sub_items.get("data") or []
    return data[0] if data else None


@dataclass(frozen=True)
class ProviderSubscription:
    """A Stripe subscription reduced to the fields the local record mirrors."""

    id: str
    customer_id: str | None
    status: SubscriptionStatus
    price_id: str | None
    item_id: str | None
    start_date: datetime | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    ended_at: datetime | None
    created: datetime | None

    @classmethod
    def from_stripe(cls, stripe_sub: Mapping[str, Any]) -> "ProviderSubscription":
        item = _first_item(stripe_sub)
        price = item.get("price") if item else None

        # Stripe API 2025-08-27 (basil) moved current_period_* to the item
        period_start = item.get("current_period_start") if item else None
        period_end = item.get("current_period_end") if item else None
        if period_start is None:
            period_start = stripe_sub.get("current_period_start")
        if period_end is None:
            period_end = stripe_sub.get("current_period_end")

        return cls(
            id=stripe_sub["id"],
            customer_id=id_of(stripe_sub.get("customer")),
            status=parse_status(stripe_sub.get("status")),
            price_id=id_of(price),
            item_id=item.get("id") if item else None,
            start_date=ts_to_naive(stripe_sub.get("start_date")),
            current_period_start=ts_to_naive(period_start),
            current_period_end=ts_to_naive(period_end),
            cancel_at_period_end=bool(stripe_sub.get("cancel_at_period_end")),
            canceled_at=ts_to_naive(stripe_sub.get("canceled_at")),
            ended_at=ts_to_naive(stripe_sub.get("ended_at")),
            created=ts_to_naive(stripe_sub.get("created")),
        )


@dataclass(frozen=True)
class ProviderCustomer:
    id: str
    email: str | None
    name: str | None

    @classmethod
    def from_stripe(cls, customer: Mapping[str, Any]) -> "ProviderCustomer":
        return cls(id=customer["id"], email=customer.get("email"), name=customer.get("name"))


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str


@dataclass(frozen=True)
class CheckoutSessionDetails:
    """A retrieved checkout session with its (optional) subscription expanded."""

    session_id: str
    customer_id: str | None
    status: str | None
    payment_status: str | None
    subscription: ProviderSubscription | None
    subscription_id: str | None

    @classmethod
    def from_stripe(cls, session: Mapping[str, Any]) -> "CheckoutSessionDetails":
        raw_sub = session.get("subscription")
        subscription = None
        if isinstance(raw_sub, Mapping):
            subscription = ProviderSubscription.from_stripe(raw_sub)
        return cls(
            session_id=session["id"],
            customer_id=id_of(session.get("customer")),
            status=session.get("status"),
            payment_status=session.get("payment_status"),
            subscription=subscription,
            subscription_id=id_of(raw_sub),
        )


@dataclass(frozen=True)
class PortalSessionResult:
    url: str
