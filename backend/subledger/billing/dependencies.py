"""Plan gating dependencies — enforce entitlements based on the subscription plan."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.auth.dependencies import get_current_profile
from subledger.billing.entitlements import has_access, has_model_access
from subledger.billing.plans import get_plan, required_plan_for_model, tier_rank
from subledger.database import get_db
from subledger.models.subscription import SubscriptionRecord
from subledger.models.user import Profile
from subledger.services.subscription_service import get_current_subscription

logger = logging.getLogger(__name__)

UPGRADE_URL = "/api/v1/billing/checkout-sessions"


async def get_current_record(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
) -> SubscriptionRecord:
    """The caller's current subscription record (free default when none)."""
    return await get_current_subscription(db, profile.id)


def _payment_required(message: str, current_plan: str, required_plan: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={
            "message": message,
            "plan": current_plan,
            "required_plan": required_plan,
            "upgrade_url": UPGRADE_URL,
        },
    )


def require_plan(plan_id: str) -> Callable[..., Awaitable[SubscriptionRecord]]:
    """Dependency factory: raise 402 unless the caller's plan ranks at or above ``plan_id``.

    Usage::

        @router.get("/reports", dependencies=[Depends(require_plan("pro"))])
    """
    tier_rank(plan_id)  # unknown plans fail at import time, not per request
    required = get_plan(plan_id)

    async def _check(record: SubscriptionRecord = Depends(get_current_record)) -> SubscriptionRecord:
        if not has_access(record.plan_id, required.id):
            logger.info("Plan %s denied access requiring %s (user %s)", record.plan_id, required.id, record.user_id)
            raise _payment_required(
                f"This feature requires the {required.display_name} plan or higher.",
                current_plan=get_plan(record.plan_id).id,
                required_plan=required.id,
            )
        return record

    return _check


async def require_model_access(
    model_id: str,
    record: SubscriptionRecord = Depends(get_current_record),
) -> SubscriptionRecord:
    """Raise 404 for unknown models and 402 when the plan does not include ``model_id``."""
    required = required_plan_for_model(model_id)
    if required is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown model '{model_id}'")

    if not has_model_access(record.plan_id, model_id):
        raise _payment_required(
            f"Model '{model_id}' requires the {get_plan(required).display_name} plan or higher.",
            current_plan=get_plan(record.plan_id).id,
            required_plan=required,
        )
    return record
