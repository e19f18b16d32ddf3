"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # "starter", "pro" or "enterprise" (legacy "2".."4" accepted)
    interval: str = "month"  # "month" or "year"
    success_url: str | None = None
    cancel_url: str | None = None


class PlanChangeRequest(BaseModel):
    """Request to move an existing subscription to another plan in-place."""

    plan: str
    interval: str = "month"


class PortalRequest(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = None


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    id: str
    display_name: str
    tier_rank: int
    price_monthly_cents: int
    price_yearly_cents: int
    features: list[str]
    api_calls_per_day: int | None  # None = unlimited
    purchasable: bool


class PlansListResponse(BaseModel):
    """All available plans, cheapest first."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """A subscription record; ``id`` is None for the synthesized free default."""

    id: uuid.UUID | None
    plan: PlanResponse
    status: str
    stripe_subscription_id: str | None
    start_date: datetime | None
    end_date: datetime | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    synced_at: datetime | None


class BillingStateResponse(BaseModel):
    """Where the caller stands in the checkout/reconcile lifecycle."""

    state: str
    stripe_customer_id: str | None
    subscription: SubscriptionResponse


class CustomerResponse(BaseModel):
    """The caller's Stripe customer."""

    stripe_customer_id: str


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str


class CheckoutSessionStatusResponse(BaseModel):
    """Result of verifying a finished checkout on the success page."""

    session_id: str
    subscription: SubscriptionResponse


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    portal_url: str


class EntitlementsResponse(BaseModel):
    """Features and models the caller's plan unlocks."""

    plan: PlanResponse
    features: list[str]
    models: list[str]


class ModelAccessResponse(BaseModel):
    model_id: str
    required_plan: str | None = Field(description="None when the model is not offered")
    has_access: bool
