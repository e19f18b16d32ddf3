"""Entitlement checks — plan hierarchy comparison and model/feature access."""

from dataclasses import dataclass

from subledger.billing.plans import (
    FREE_PLAN_ID,
    MODEL_REQUIREMENTS,
    Plan,
    get_plan,
    required_plan_for_model,
    tier_rank,
)


@dataclass(frozen=True)
class EntitlementSummary:
    plan: Plan
    features: frozenset[str]
    models: tuple[str, ...]


def has_access(current_plan_id: str | None, required_plan_id: str) -> bool:
    """True iff the current plan ranks at or above the required plan.

    ``current_plan_id`` is None when the user has no subscription at all; only
    free-tier access is granted then. Unrecognized current plans count as
    free. Raises InvalidPlan if ``required_plan_id`` is unknown.
    """
    required_rank = tier_rank(required_plan_id)
    if current_plan_id is None:
        return required_rank == 0
    return get_plan(current_plan_id).tier_rank >= required_rank


def has_model_access(current_plan_id: str | None, model_id: str) -> bool:
    """Model access requires a subscription record (even free) and a known model."""
    if current_plan_id is None:
        return False
    required = required_plan_for_model(model_id)
    if required is None:
        return False
    return has_access(current_plan_id, required)


def has_feature(current_plan_id: str | None, feature: str) -> bool:
    plan = get_plan(current_plan_id or FREE_PLAN_ID)
    return feature in plan.features


def entitlements_for(current_plan_id: str | None) -> EntitlementSummary:
    plan = get_plan(current_plan_id)
    models = tuple(
        model_id for model_id in MODEL_REQUIREMENTS if has_model_access(current_plan_id, model_id)
    )
    return EntitlementSummary(plan=plan, features=plan.features, models=models)
