"""Billing API endpoints — customers, Stripe Checkout, reconciliation, and entitlements."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.api.deps import get_current_profile, get_current_record, get_db, get_reconciler
from subledger.billing.entitlements import entitlements_for, has_model_access
from subledger.billing.plans import PLANS, Plan, get_plan, price_id_for_plan, required_plan_for_model
from subledger.config import settings
from subledger.models.subscription import SubscriptionRecord
from subledger.models.user import Profile
from subledger.schemas.billing import (
    BillingStateResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSessionStatusResponse,
    CustomerResponse,
    EntitlementsResponse,
    ModelAccessResponse,
    PlanChangeRequest,
    PlanResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionResponse,
)
from subledger.services.reconciler import SubscriptionReconciler
from subledger.services.subscription_service import (
    get_billing_customer,
    get_current_subscription,
    get_subscription_by_stripe_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        display_name=plan.display_name,
        tier_rank=plan.tier_rank,
        price_monthly_cents=plan.price_monthly_cents,
        price_yearly_cents=plan.price_yearly_cents,
        features=sorted(plan.features),
        api_calls_per_day=plan.api_calls_per_day,
        purchasable=not plan.is_free and bool(plan.stripe_monthly_price_id or plan.stripe_yearly_price_id),
    )


def _subscription_response(record: SubscriptionRecord) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=record.id,
        plan=_plan_response(get_plan(record.plan_id)),
        status=record.status,
        stripe_subscription_id=record.stripe_subscription_id,
        start_date=record.start_date,
        end_date=record.end_date,
        current_period_start=record.current_period_start,
        current_period_end=record.current_period_end,
        cancel_at_period_end=bool(record.cancel_at_period_end),
        canceled_at=record.canceled_at,
        synced_at=record.synced_at,
    )


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    plans = sorted(PLANS.values(), key=lambda p: p.tier_rank)
    return PlansListResponse(plans=[_plan_response(p) for p in plans])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> SubscriptionResponse:
    """Current subscription; re-synced with Stripe when the cached state is stale."""
    record = await reconciler.reconcile_if_stale(db, profile)
    return _subscription_response(record)


@router.get("/state", response_model=BillingStateResponse)
async def get_billing_state(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> BillingStateResponse:
    state = await reconciler.billing_state(db, profile)
    customer = await get_billing_customer(db, profile.id)
    record = await get_current_subscription(db, profile.id)
    return BillingStateResponse(
        state=state,
        stripe_customer_id=customer.stripe_customer_id if customer else None,
        subscription=_subscription_response(record),
    )


@router.post("/customers", response_model=CustomerResponse)
async def ensure_customer(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> CustomerResponse:
    """Create the caller's Stripe customer if missing; idempotent."""
    customer_id = await reconciler.ensure_customer(db, profile)
    return CustomerResponse(stripe_customer_id=customer_id)


@router.post("/checkout-sessions", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a subscription purchase."""
    success_url = body.success_url or f"{settings.frontend_url}/billing?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = body.cancel_url or f"{settings.frontend_url}/pricing"

    price_id_for_plan(body.plan, body.interval)  # InvalidPlan before any Stripe call

    # Keep the customer link even if session creation fails below
    await reconciler.ensure_customer(db, profile)
    await db.commit()

    session = await reconciler.start_checkout(
        db,
        profile,
        plan_id=body.plan,
        success_url=success_url,
        cancel_url=cancel_url,
        interval=body.interval,
    )
    return CheckoutResponse(checkout_url=session.url, session_id=session.session_id)


@router.get("/checkout-sessions/{session_id}", response_model=CheckoutSessionStatusResponse)
async def verify_checkout(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> CheckoutSessionStatusResponse:
    """Verify a completed checkout (success page) and return the stored subscription."""
    record = await reconciler.complete_checkout(db, profile, session_id)
    return CheckoutSessionStatusResponse(session_id=session_id, subscription=_subscription_response(record))


@router.post("/portal-sessions", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    return_url = body.return_url or f"{settings.frontend_url}/billing"
    session = await reconciler.open_portal(db, profile, return_url)
    return PortalResponse(portal_url=session.url)


@router.post("/reconcile", response_model=SubscriptionResponse)
async def reconcile(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> SubscriptionResponse:
    """Pull subscription state from Stripe now, regardless of staleness."""
    record = await reconciler.reconcile(db, profile)
    return _subscription_response(record)


async def _owned_subscription(db: AsyncSession, profile: Profile, subscription_id: str) -> SubscriptionRecord:
    record = await get_subscription_by_stripe_id(db, subscription_id)
    if record is None or record.user_id != profile.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        )
    return record


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription_by_id(
    subscription_id: str,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
) -> SubscriptionResponse:
    record = await _owned_subscription(db, profile, subscription_id)
    return _subscription_response(record)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def change_plan(
    subscription_id: str,
    body: PlanChangeRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> SubscriptionResponse:
    """Upgrade or downgrade in place; the result may be ``incomplete`` pending payment."""
    await _owned_subscription(db, profile, subscription_id)
    record = await reconciler.change_plan(db, profile, subscription_id, body.plan, body.interval)
    return _subscription_response(record)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> SubscriptionResponse:
    """Cancel at period end; access continues until ``current_period_end``."""
    await _owned_subscription(db, profile, subscription_id)
    record = await reconciler.cancel(db, profile, subscription_id)
    return _subscription_response(record)


@router.get("/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(
    record: SubscriptionRecord = Depends(get_current_record),
) -> EntitlementsResponse:
    summary = entitlements_for(record.plan_id)
    return EntitlementsResponse(
        plan=_plan_response(summary.plan),
        features=sorted(summary.features),
        models=list(summary.models),
    )


@router.get("/entitlements/models/{model_id}", response_model=ModelAccessResponse)
async def check_model_access(
    model_id: str,
    record: SubscriptionRecord = Depends(get_current_record),
) -> ModelAccessResponse:
    """Whether the caller's plan includes ``model_id``; unknown models are never accessible."""
    return ModelAccessResponse(
        model_id=model_id,
        required_plan=required_plan_for_model(model_id),
        has_access=has_model_access(record.plan_id, model_id),
    )
