"""Billing customer model — the Stripe customer linked to a profile."""

import uuid

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from subledger.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BillingCustomer(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Maps a user to their Stripe customer."""

    __tablename__ = "billing_customers"

    # UNIQUE: a second concurrent insert for the same user must fail
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    stripe_customer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    user: Mapped["Profile"] = relationship(back_populates="billing_customer", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return f"<BillingCustomer(user_id={self.user_id}, stripe_customer_id={self.stripe_customer_id})>"
