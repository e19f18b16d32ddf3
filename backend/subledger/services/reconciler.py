"""Subscription reconciler — keeps local subscription records in step with Stripe.

The reconciler holds no per-user state; every operation receives the
database session and the caller's profile. Stripe is authoritative: local
records are only ever overwritten with what the provider last reported.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.billing.errors import (
    BillingError,
    InvalidPlan,
    NoActiveSubscription,
    NoBillingCustomer,
    PersistenceError,
)
from subledger.billing.plans import normalize_plan_id, price_id_for_plan
from subledger.billing.provider_types import (
    CheckoutSessionResult,
    PortalSessionResult,
    ProviderSubscription,
)
from subledger.billing.stripe_client import BillingProviderClient
from subledger.config import settings
from subledger.models.subscription import ACTIVE_STATUSES, LAPSED_STATUSES, SubscriptionRecord, SubscriptionStatus
from subledger.models.user import Profile
from subledger.services.subscription_service import (
    get_billing_customer,
    get_current_subscription,
    get_subscription_by_stripe_id,
    insert_billing_customer,
    list_provider_backed_subscriptions,
    mark_subscription_canceled,
    upsert_subscription_from_provider,
    utcnow,
)

logger = logging.getLogger(__name__)


class ReconcileState(StrEnum):
    NO_CUSTOMER = "no_customer"
    CUSTOMER_ONLY = "customer_only"
    HAS_LOCAL_SUBSCRIPTION = "has_local_subscription"
    SYNCED = "synced"


def select_active_subscription(
    subscriptions: Iterable[ProviderSubscription],
) -> ProviderSubscription | None:
    """Pick the subscription that determines the user's plan.

    Only active, trialing and past_due subscriptions qualify. Ties are broken
    by the latest current period start, then the latest start date (creation
    time when absent), then the subscription id, so the result never depends
    on provider ordering. ``get_current_subscription`` ranks stored rows the
    same way.
    """
    candidates = [s for s in subscriptions if s.status in ACTIVE_STATUSES]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda s: (s.current_period_start or datetime.min, s.start_date or s.created or datetime.min, s.id),
    )


class SubscriptionReconciler:
    """Orchestrates customer creation, checkout and provider-to-local merges."""

    def __init__(
        self,
        client: BillingProviderClient,
        stale_after: timedelta | None = None,
    ) -> None:
        self.client = client
        if stale_after is None:
            stale_after = timedelta(seconds=settings.subscription_stale_after_seconds)
        self.stale_after = stale_after

    # -- state -------------------------------------------------------------

    def is_stale(self, record: SubscriptionRecord, now: datetime | None = None) -> bool:
        if not record.is_provider_backed:
            return False
        if record.synced_at is None:
            return True
        return (now or utcnow()) - record.synced_at > self.stale_after

    async def billing_state(self, db: AsyncSession, profile: Profile) -> ReconcileState:
        customer = await get_billing_customer(db, profile.id)
        if customer is None:
            return ReconcileState.NO_CUSTOMER
        current = await get_current_subscription(db, profile.id)
        if not current.is_provider_backed:
            return ReconcileState.CUSTOMER_ONLY
        if self.is_stale(current):
            return ReconcileState.HAS_LOCAL_SUBSCRIPTION
        return ReconcileState.SYNCED

    # -- customers & checkout ---------------------------------------------

    async def ensure_customer(self, db: AsyncSession, profile: Profile) -> str:
        """Return the user's Stripe customer id, creating the customer if missing."""
        existing = await get_billing_customer(db, profile.id)
        if existing is not None:
            return existing.stripe_customer_id

        created = await self.client.create_customer(
            email=profile.email,
            name=profile.customer_name,
            metadata={"user_id": str(profile.id)},
        )
        try:
            stored = await insert_billing_customer(
                db,
                user_id=profile.id,
                stripe_customer_id=created.id,
                email=profile.email,
                name=profile.customer_name,
            )
        except SQLAlchemyError as e:
            logger.error("Could not link Stripe customer %s to user %s: %s", created.id, profile.id, e)
            await db.rollback()
            raise PersistenceError("Could not store billing customer") from e

        if stored.stripe_customer_id != created.id:
            # A concurrent request linked its customer first
            logger.warning(
                "Stripe customer %s for user %s is orphaned; using existing customer %s",
                created.id,
                profile.id,
                stored.stripe_customer_id,
            )
        else:
            logger.info("Linked Stripe customer %s to user %s", created.id, profile.id)
        return stored.stripe_customer_id

    async def start_checkout(
        self,
        db: AsyncSession,
        profile: Profile,
        plan_id: str,
        success_url: str,
        cancel_url: str,
        interval: str = "month",
    ) -> CheckoutSessionResult:
        """Create a Checkout Session for ``plan_id``.

        Completion is not awaited here; it is observed later through
        ``complete_checkout``, ``reconcile`` or the webhook.
        """
        price_id = price_id_for_plan(plan_id, interval)
        customer_id = await self.ensure_customer(db, profile)
        return await self.client.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
        )

    async def open_portal(self, db: AsyncSession, profile: Profile, return_url: str) -> PortalSessionResult:
        customer = await get_billing_customer(db, profile.id)
        if customer is None:
            raise NoBillingCustomer()
        return await self.client.create_portal_session(customer.stripe_customer_id, return_url)

    async def complete_checkout(
        self, db: AsyncSession, profile: Profile, session_id: str
    ) -> SubscriptionRecord:
        """Verify a finished checkout and store its subscription."""
        customer = await get_billing_customer(db, profile.id)
        if customer is None:
            raise NoBillingCustomer()

        session = await self.client.retrieve_checkout_session(session_id)
        if session.customer_id != customer.stripe_customer_id:
            logger.warning(
                "Checkout session %s belongs to customer %s, not %s",
                session_id,
                session.customer_id,
                customer.stripe_customer_id,
            )
            raise NoBillingCustomer("Checkout session does not belong to this account")

        provider_sub = session.subscription
        if provider_sub is None and session.subscription_id:
            provider_sub = await self.client.get_subscription(session.subscription_id)
        if provider_sub is None:
            logger.info("Checkout session %s has no subscription yet", session_id)
            return await get_current_subscription(db, profile.id)

        await self._store(db, profile, [provider_sub])
        return await get_current_subscription(db, profile.id)

    # -- reconciliation ----------------------------------------------------

    async def reconcile(self, db: AsyncSession, profile: Profile) -> SubscriptionRecord:
        """Pull the customer's subscriptions from Stripe and merge them locally."""
        customer = await get_billing_customer(db, profile.id)
        if customer is None:
            return await get_current_subscription(db, profile.id)

        provider_subs = await self.client.list_customer_subscriptions(customer.stripe_customer_id)
        active = select_active_subscription(provider_subs)
        local = {r.stripe_subscription_id: r for r in await list_provider_backed_subscriptions(db, profile.id)}

        to_store = [s for s in provider_subs if s.id in local]
        if active is not None and active.id not in local:
            to_store.append(active)
        returned_ids = {s.id for s in provider_subs}
        vanished = [
            r
            for sub_id, r in local.items()
            if sub_id not in returned_ids and r.status != SubscriptionStatus.CANCELED
        ]
        lapsed = [local[s.id] for s in provider_subs if s.id in local and s.status in LAPSED_STATUSES]

        await self._store(db, profile, to_store, vanished + lapsed)

        current = await get_current_subscription(db, profile.id)
        logger.info(
            "Reconciled user %s: plan=%s status=%s (%d provider subscriptions)",
            profile.id,
            current.plan_id,
            current.status,
            len(provider_subs),
        )
        return current

    async def reconcile_if_stale(self, db: AsyncSession, profile: Profile) -> SubscriptionRecord:
        """Reconcile only when the cached provider state is older than the staleness window."""
        current = await get_current_subscription(db, profile.id)
        if not self.is_stale(current):
            return current
        try:
            return await self.reconcile(db, profile)
        except BillingError as e:
            logger.warning("Serving cached subscription for user %s; reconcile failed: %s", profile.id, e)
            return await get_current_subscription(db, profile.id)

    async def _store(
        self,
        db: AsyncSession,
        profile: Profile,
        provider_subs: Iterable[ProviderSubscription],
        to_cancel: Iterable[SubscriptionRecord] = (),
    ) -> None:
        """Apply provider state locally; on failure roll back and keep the previous rows."""
        synced_at = utcnow()
        try:
            for provider_sub in provider_subs:
                await upsert_subscription_from_provider(db, profile.id, provider_sub, synced_at=synced_at)
            for record in to_cancel:
                await mark_subscription_canceled(db, record, ended_at=synced_at)
        except SQLAlchemyError as e:
            logger.error("Reconciliation for user %s aborted: %s", profile.id, e)
            await db.rollback()
            raise PersistenceError() from e

    async def _reload(self, db: AsyncSession, subscription_id: str) -> SubscriptionRecord:
        record = await get_subscription_by_stripe_id(db, subscription_id)
        if record is None:
            raise PersistenceError(f"Subscription {subscription_id} missing after update")
        return record

    # -- plan changes ------------------------------------------------------

    async def _owned_active_record(
        self, db: AsyncSession, profile: Profile, subscription_id: str | None
    ) -> SubscriptionRecord:
        if subscription_id is None:
            record = await get_current_subscription(db, profile.id)
        else:
            record = await get_subscription_by_stripe_id(db, subscription_id)
            if record is not None and record.user_id != profile.id:
                record = None
        if record is None or not record.is_provider_backed or record.status == SubscriptionStatus.CANCELED:
            raise NoActiveSubscription("No active subscription to change")
        return record

    async def change_plan(
        self,
        db: AsyncSession,
        profile: Profile,
        subscription_id: str | None,
        plan_id: str,
        interval: str = "month",
    ) -> SubscriptionRecord:
        """Move an existing subscription to another plan.

        The returned record may carry ``incomplete`` / ``past_due`` when the
        change needs further payment action.
        """
        price_id = price_id_for_plan(plan_id, interval)
        record = await self._owned_active_record(db, profile, subscription_id)
        if record.stripe_price_id == price_id:
            raise InvalidPlan(f"Already subscribed to '{normalize_plan_id(plan_id)}' ({interval}ly)")

        provider_sub = await self.client.update_subscription(record.stripe_subscription_id, price_id)
        await self._store(db, profile, [provider_sub])
        return await self._reload(db, provider_sub.id)

    async def cancel(
        self, db: AsyncSession, profile: Profile, subscription_id: str | None = None
    ) -> SubscriptionRecord:
        """Schedule cancellation at period end.

        The local record keeps the status Stripe reports (normally still
        ``active``) with ``cancel_at_period_end`` set.
        """
        try:
            record = await self._owned_active_record(db, profile, subscription_id)
        except NoActiveSubscription:
            raise NoActiveSubscription("No active subscription to cancel") from None

        provider_sub = await self.client.cancel_subscription(record.stripe_subscription_id)
        await self._store(db, profile, [provider_sub])
        canceled = await self._reload(db, provider_sub.id)
        logger.info(
            "Subscription %s for user %s will cancel at period end (%s)",
            provider_sub.id,
            profile.id,
            canceled.current_period_end,
        )
        return canceled
