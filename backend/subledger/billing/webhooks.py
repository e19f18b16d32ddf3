"""Stripe webhook event handlers — process subscription lifecycle events.

Handlers are idempotent: they overwrite the record keyed by the Stripe
subscription id with provider state and never accumulate. Redelivering an
event leaves the stored record as the first delivery left it.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from subledger.billing.provider_types import ProviderSubscription, id_of, ts_to_naive
from subledger.billing.stripe_client import BillingProviderClient
from subledger.models.subscription import SubscriptionStatus
from subledger.services.subscription_service import (
    get_billing_customer_by_stripe_id,
    get_subscription_by_stripe_id,
    upsert_subscription_from_provider,
)

logger = logging.getLogger(__name__)


class WebhookEventType(StrEnum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class WebhookOutcome(StrEnum):
    PROCESSED = "processed"
    SKIPPED = "skipped"  # recognized, but nothing local to update
    IGNORED = "ignored"  # event type not handled


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    kind: WebhookEventType | None
    created: datetime | None
    payload: Mapping[str, Any]

    @classmethod
    def from_stripe(cls, event: Mapping[str, Any]) -> "WebhookEvent":
        try:
            kind = WebhookEventType(event["type"])
        except ValueError:
            kind = None
        return cls(
            id=event["id"],
            type=event["type"],
            kind=kind,
            created=ts_to_naive(event.get("created")),
            payload=event["data"]["object"],
        )


Handler = Callable[[AsyncSession, BillingProviderClient, WebhookEvent], Awaitable[WebhookOutcome]]


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Subscription id of an invoice.

    Stripe API 2025-03-31 (basil) moved it under parent.subscription_details.
    """
    sub_id = id_of(invoice.get("subscription"))
    if sub_id:
        return sub_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return id_of(details.get("subscription"))


async def _resolve_user_id(
    db: AsyncSession, subscription_id: str, customer_id: str | None
) -> uuid.UUID | None:
    """Owner of a Stripe subscription: existing record first, then the customer link."""
    record = await get_subscription_by_stripe_id(db, subscription_id)
    if record is not None:
        return record.user_id
    if customer_id:
        customer = await get_billing_customer_by_stripe_id(db, customer_id)
        if customer is not None:
            return customer.user_id
    return None


async def handle_checkout_session_completed(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Handle checkout.session.completed — store the new subscription."""
    session = event.payload
    customer_id = id_of(session.get("customer"))
    subscription_id = id_of(session.get("subscription"))

    if not subscription_id:
        logger.info("Checkout session %s has no subscription (one-time?), skipping", session.get("id"))
        return WebhookOutcome.SKIPPED

    user_id = await _resolve_user_id(db, subscription_id, customer_id)
    if user_id is None:
        logger.warning(
            "No local customer found for Stripe customer %s (checkout %s)",
            customer_id,
            session.get("id"),
        )
        return WebhookOutcome.SKIPPED

    # Fetch the full subscription to get price and period info
    provider_sub = await client.get_subscription(subscription_id)
    await upsert_subscription_from_provider(db, user_id, provider_sub, synced_at=event.created)
    logger.info("Checkout completed: subscription %s stored for user %s", subscription_id, user_id)
    return WebhookOutcome.PROCESSED


async def handle_subscription_changed(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Handle customer.subscription.created/updated — sync plan, status, and period."""
    provider_sub = ProviderSubscription.from_stripe(event.payload)

    user_id = await _resolve_user_id(db, provider_sub.id, provider_sub.customer_id)
    if user_id is None:
        logger.warning(
            "No local owner for Stripe subscription %s (customer %s)",
            provider_sub.id,
            provider_sub.customer_id,
        )
        return WebhookOutcome.SKIPPED

    await upsert_subscription_from_provider(db, user_id, provider_sub, synced_at=event.created)
    logger.info("Subscription %s: %s → status=%s", event.type, provider_sub.id, provider_sub.status)
    return WebhookOutcome.PROCESSED


async def handle_subscription_deleted(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Handle customer.subscription.deleted — mark the local record canceled."""
    provider_sub = ProviderSubscription.from_stripe(event.payload)

    record = await get_subscription_by_stripe_id(db, provider_sub.id)
    if record is None:
        logger.info("No local subscription for deleted Stripe subscription %s, nothing to do", provider_sub.id)
        return WebhookOutcome.SKIPPED

    if provider_sub.status != SubscriptionStatus.CANCELED:
        # Deleted subscriptions are always canceled, whatever the payload says
        provider_sub = replace(provider_sub, status=SubscriptionStatus.CANCELED)
    await upsert_subscription_from_provider(db, record.user_id, provider_sub, synced_at=event.created)
    logger.info("Subscription deleted: %s marked canceled", provider_sub.id)
    return WebhookOutcome.PROCESSED


async def handle_invoice_payment_succeeded(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Handle invoice.payment_succeeded — refresh status and billing period."""
    invoice = event.payload
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.get("id"))
        return WebhookOutcome.SKIPPED

    user_id = await _resolve_user_id(db, subscription_id, id_of(invoice.get("customer")))
    if user_id is None:
        logger.warning(
            "No local owner for Stripe subscription %s (invoice %s)",
            subscription_id,
            invoice.get("id"),
        )
        return WebhookOutcome.SKIPPED

    # Fetch full subscription from Stripe to get the new period
    provider_sub = await client.get_subscription(subscription_id)
    await upsert_subscription_from_provider(db, user_id, provider_sub, synced_at=event.created)
    logger.info("Invoice paid: subscription %s refreshed (status=%s)", subscription_id, provider_sub.status)
    return WebhookOutcome.PROCESSED


async def handle_invoice_payment_failed(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Handle invoice.payment_failed — store the status Stripe now reports (usually past_due)."""
    invoice = event.payload
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping payment failure", invoice.get("id"))
        return WebhookOutcome.SKIPPED

    user_id = await _resolve_user_id(db, subscription_id, id_of(invoice.get("customer")))
    if user_id is None:
        logger.warning(
            "No local owner for Stripe subscription %s (payment failed, invoice %s)",
            subscription_id,
            invoice.get("id"),
        )
        return WebhookOutcome.SKIPPED

    # The invoice alone doesn't say whether the subscription survived, ask Stripe
    provider_sub = await client.get_subscription(subscription_id)
    await upsert_subscription_from_provider(db, user_id, provider_sub, synced_at=event.created)
    logger.info("Payment failed: subscription %s now %s", subscription_id, provider_sub.status)
    return WebhookOutcome.PROCESSED


EVENT_HANDLERS: dict[WebhookEventType, Handler] = {
    WebhookEventType.CHECKOUT_SESSION_COMPLETED: handle_checkout_session_completed,
    WebhookEventType.SUBSCRIPTION_CREATED: handle_subscription_changed,
    WebhookEventType.SUBSCRIPTION_UPDATED: handle_subscription_changed,
    WebhookEventType.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    WebhookEventType.INVOICE_PAYMENT_SUCCEEDED: handle_invoice_payment_succeeded,
    WebhookEventType.INVOICE_PAYMENT_FAILED: handle_invoice_payment_failed,
}


async def dispatch_event(
    db: AsyncSession, client: BillingProviderClient, event: WebhookEvent
) -> WebhookOutcome:
    """Route a verified event to its handler; unknown types are acknowledged and ignored."""
    if event.kind is None:
        logger.debug("Unhandled webhook event type: %s", event.type)
        return WebhookOutcome.IGNORED

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)
    return await EVENT_HANDLERS[event.kind](db, client, event)
