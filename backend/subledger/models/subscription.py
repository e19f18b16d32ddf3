"""Subscription model — local projection of Stripe billing state per user."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from subledger.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SubscriptionStatus(StrEnum):
    """Stripe subscription statuses (closed set)."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


# Statuses that still grant the plan's entitlements
ACTIVE_STATUSES: frozenset[str] = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE}
)

# Listed by Stripe but lapsed; reconciliation closes them locally
LAPSED_STATUSES: frozenset[str] = frozenset({SubscriptionStatus.UNPAID, SubscriptionStatus.INCOMPLETE_EXPIRED})


class SubscriptionRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's subscription as last reported by Stripe.

    A user may accumulate several rows over time (free default, paid plans,
    canceled history). Rows are never deleted.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Reconciliation key; NULL for the provider-less free default
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Plan & status
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False, server_default="free")
    status: Mapped[str] = mapped_column(String(50), nullable=False, server_default="active")

    # Lifecycle
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="0", default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    user: Mapped["Profile"] = relationship(back_populates="subscriptions", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    @property
    def is_provider_backed(self) -> bool:
        return self.stripe_subscription_id is not None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<SubscriptionRecord(id={self.id}, user_id={self.user_id}, plan={self.plan_id}, "
            f"status={self.status}, stripe_subscription_id={self.stripe_subscription_id})>"
        )
