"""Profile model — local mirror of a Supabase auth user."""

import uuid

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from subledger.database import Base, TimestampMixin


class Profile(TimestampMixin, Base):
    """Profile row keyed by the Supabase user id (``auth.users.id``)."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    billing_customer: Mapped["BillingCustomer | None"] = relationship(  # noqa: F821
        "BillingCustomer", back_populates="user", uselist=False, lazy="selectin"
    )
    subscriptions: Mapped[list["SubscriptionRecord"]] = relationship(  # noqa: F821
        "SubscriptionRecord", back_populates="user", lazy="selectin"
    )

    @property
    def customer_name(self) -> str:
        """Name sent to Stripe: display name, username, or the email's local part."""
        return self.display_name or self.username or self.email.split("@")[0]

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email!r}>"
