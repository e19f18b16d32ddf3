"""Profile endpoints — the caller's own profile."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.api.deps import get_billing_client, get_current_profile, get_db
from subledger.billing.errors import BillingError
from subledger.billing.stripe_client import BillingProviderClient
from subledger.models.user import Profile
from subledger.schemas.profile import ProfileResponse, ProfileUpdate
from subledger.services.subscription_service import get_billing_customer, update_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


@router.get("/me", response_model=ProfileResponse)
async def get_me(profile: Profile = Depends(get_current_profile)) -> Profile:
    return profile


@router.patch("/me", response_model=ProfileResponse)
async def update_me(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    client: BillingProviderClient = Depends(get_billing_client),
) -> Profile:
    """Update the caller's profile.

    A changed name is pushed to the Stripe customer when one exists. Stripe
    failures are logged; the profile update still succeeds.
    """
    old_name = profile.customer_name
    profile = await update_profile(
        db,
        profile,
        username=body.username,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
    )

    if profile.customer_name != old_name:
        customer = await get_billing_customer(db, profile.id)
        if customer is not None:
            try:
                await client.update_customer(customer.stripe_customer_id, name=profile.customer_name)
                customer.name = profile.customer_name
                await db.flush()
            except BillingError as e:
                logger.warning(
                    "Could not update Stripe customer %s name for user %s: %s",
                    customer.stripe_customer_id,
                    profile.id,
                    e,
                )

    await db.refresh(profile)
    return profile
