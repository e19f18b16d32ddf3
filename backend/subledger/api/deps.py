"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and billing dependencies so that
router modules can import everything they need from one place::

    from subledger.api.deps import get_db, get_current_profile, get_reconciler
"""

from fastapi import Depends

from subledger.auth.dependencies import get_auth_session, get_current_profile
from subledger.billing.dependencies import (
    get_current_record,
    require_model_access,
    require_plan,
)
from subledger.billing.stripe_client import BillingProviderClient, get_billing_client
from subledger.database import get_db
from subledger.services.reconciler import SubscriptionReconciler


def get_reconciler(
    client: BillingProviderClient = Depends(get_billing_client),
) -> SubscriptionReconciler:
    """A reconciler bound to the process-wide provider client."""
    return SubscriptionReconciler(client)


__all__ = [
    "get_db",
    "get_auth_session",
    "get_current_profile",
    "get_current_record",
    "get_billing_client",
    "get_reconciler",
    "require_plan",
    "require_model_access",
]
