"""Subscription service — persistence operations for profiles, customers and subscriptions.

Writes that can race (customer creation, provider-state merges from the
reconciler and from webhooks) go through ``INSERT .. ON CONFLICT`` so the
database's unique constraints decide the outcome.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.billing.errors import PersistenceError
from subledger.billing.plans import FREE_PLAN_ID, get_plan, plan_id_for_price
from subledger.billing.provider_types import ProviderSubscription
from subledger.models.billing_customer import BillingCustomer
from subledger.models.subscription import ACTIVE_STATUSES, SubscriptionRecord, SubscriptionStatus
from subledger.models.user import Profile

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC now, matching the naive timestamp columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _dialect_insert(db: AsyncSession):
    """``insert`` construct supporting ON CONFLICT for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_profile(db: AsyncSession, user_id: uuid.UUID, email: str) -> Profile:
    """Return the user's profile, creating it with a free subscription on first sight."""
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile

    insert = _dialect_insert(db)
    result = await db.execute(
        insert(Profile)
        .values(id=user_id, email=email, is_active=True)
        .on_conflict_do_nothing(index_elements=[Profile.id])
    )
    if result.rowcount == 1:
        logger.info("Created profile for user %s", user_id)
        db.add(
            SubscriptionRecord(
                user_id=user_id,
                plan_id=FREE_PLAN_ID,
                status=SubscriptionStatus.ACTIVE,
                start_date=utcnow(),
                cancel_at_period_end=False,
            )
        )
        await db.flush()

    profile = await get_profile(db, user_id)
    if profile is None:
        raise PersistenceError(f"Profile {user_id} missing after insert")
    return profile


async def update_profile(
    db: AsyncSession,
    profile: Profile,
    username: str | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> Profile:
    if username is not None:
        profile.username = username
    if display_name is not None:
        profile.display_name = display_name
    if avatar_url is not None:
        profile.avatar_url = avatar_url
    await db.flush()
    return profile


# ---------------------------------------------------------------------------
# Billing customers
# ---------------------------------------------------------------------------


async def get_billing_customer(db: AsyncSession, user_id: uuid.UUID) -> BillingCustomer | None:
    result = await db.execute(
        select(BillingCustomer)
        .where(BillingCustomer.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_billing_customer_by_stripe_id(
    db: AsyncSession, stripe_customer_id: str
) -> BillingCustomer | None:
    """Look up a customer by Stripe customer ID (used by webhooks)."""
    result = await db.execute(
        select(BillingCustomer).where(BillingCustomer.stripe_customer_id == stripe_customer_id)
    )
    return result.scalar_one_or_none()


async def insert_billing_customer(
    db: AsyncSession,
    user_id: uuid.UUID,
    stripe_customer_id: str,
    email: str | None = None,
    name: str | None = None,
) -> BillingCustomer:
    """Insert the user's customer row unless one exists; return the stored row.

    When another request already linked a customer, the existing row wins
    and is returned unchanged.
    """
    insert = _dialect_insert(db)
    await db.execute(
        insert(BillingCustomer)
        .values(
            id=uuid.uuid4(),
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            email=email,
            name=name,
        )
        .on_conflict_do_nothing(index_elements=[BillingCustomer.user_id])
    )
    customer = await get_billing_customer(db, user_id)
    if customer is None:
        raise PersistenceError(f"Billing customer for user {user_id} missing after insert")
    return customer


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def free_default(user_id: uuid.UUID) -> SubscriptionRecord:
    """Transient (never persisted) free-tier record for users without one."""
    return SubscriptionRecord(
        user_id=user_id,
        plan_id=FREE_PLAN_ID,
        status=SubscriptionStatus.ACTIVE,
        cancel_at_period_end=False,
    )


async def get_current_subscription(db: AsyncSession, user_id: uuid.UUID) -> SubscriptionRecord:
    """The user's current record.

    Provider-backed active-equivalent rows first, ranked like
    ``select_active_subscription``: latest current period start, then latest
    start date, then highest Stripe id. A synthesized free default when there
    is none.
    """
    result = await db.execute(
        select(SubscriptionRecord)
        .where(
            SubscriptionRecord.user_id == user_id,
            SubscriptionRecord.status.in_(ACTIVE_STATUSES),
        )
        .order_by(
            SubscriptionRecord.stripe_subscription_id.is_(None),
            SubscriptionRecord.current_period_start.desc().nulls_last(),
            SubscriptionRecord.start_date.desc().nulls_last(),
            SubscriptionRecord.stripe_subscription_id.desc(),
            SubscriptionRecord.created_at.desc(),
        )
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none() or free_default(user_id)


async def get_subscription_by_stripe_id(
    db: AsyncSession, stripe_subscription_id: str
) -> SubscriptionRecord | None:
    """Look up a record by Stripe subscription ID (the reconciliation key)."""
    result = await db.execute(
        select(SubscriptionRecord)
        .where(SubscriptionRecord.stripe_subscription_id == stripe_subscription_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_provider_backed_subscriptions(
    db: AsyncSession, user_id: uuid.UUID
) -> list[SubscriptionRecord]:
    result = await db.execute(
        select(SubscriptionRecord)
        .where(
            SubscriptionRecord.user_id == user_id,
            SubscriptionRecord.stripe_subscription_id.is_not(None),
        )
        .order_by(SubscriptionRecord.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def upsert_subscription_from_provider(
    db: AsyncSession,
    user_id: uuid.UUID,
    provider_sub: ProviderSubscription,
    synced_at: datetime | None = None,
) -> SubscriptionRecord:
    """Insert or update the record keyed by the Stripe subscription id.

    Every column is assigned from the provider payload, so applying the same
    payload twice leaves the row unchanged apart from ``updated_at`` and
    ``synced_at``. ``end_date`` is set once, when the provider first reports
    the subscription as canceled.
    """
    synced_at = synced_at or utcnow()
    plan_id = plan_id_for_price(provider_sub.price_id)
    end_date = None
    if provider_sub.status == SubscriptionStatus.CANCELED:
        end_date = provider_sub.ended_at or provider_sub.canceled_at or synced_at

    values = {
        "plan_id": plan_id,
        "stripe_price_id": provider_sub.price_id,
        "status": provider_sub.status,
        "start_date": provider_sub.start_date,
        "current_period_start": provider_sub.current_period_start,
        "current_period_end": provider_sub.current_period_end,
        "cancel_at_period_end": provider_sub.cancel_at_period_end,
        "canceled_at": provider_sub.canceled_at,
        "synced_at": synced_at,
    }

    insert = _dialect_insert(db)
    stmt = insert(SubscriptionRecord).values(
        id=uuid.uuid4(),
        user_id=user_id,
        stripe_subscription_id=provider_sub.id,
        end_date=end_date,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SubscriptionRecord.stripe_subscription_id],
        set_={
            **values,
            "end_date": func.coalesce(SubscriptionRecord.end_date, stmt.excluded.end_date),
            "updated_at": func.now(),
        },
    )
    await db.execute(stmt)

    record = await get_subscription_by_stripe_id(db, provider_sub.id)
    if record is None:
        raise PersistenceError(f"Subscription {provider_sub.id} missing after upsert")
    if record.user_id != user_id:
        logger.warning(
            "Stripe subscription %s is stored for user %s, not %s; user left unchanged",
            provider_sub.id,
            record.user_id,
            user_id,
        )

    logger.info(
        "Upserted subscription %s: plan=%s (%s), status=%s",
        provider_sub.id,
        plan_id,
        get_plan(plan_id).display_name,
        provider_sub.status,
    )
    return record


async def mark_subscription_canceled(
    db: AsyncSession, subscription: SubscriptionRecord, ended_at: datetime | None = None
) -> SubscriptionRecord:
    """Mark a record canceled. ``end_date`` is only set if not already present."""
    subscription.status = SubscriptionStatus.CANCELED
    if subscription.end_date is None:
        subscription.end_date = ended_at or utcnow()
    await db.flush()

    logger.info(
        "Marked subscription %s (user %s) as canceled",
        subscription.stripe_subscription_id,
        subscription.user_id,
    )
    return subscription
