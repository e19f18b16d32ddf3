"""Unit tests for the plan catalog."""

import pytest

from subledger.billing.errors import InvalidPlan
from subledger.billing.plans import (
    FREE_PLAN_ID,
    LEGACY_PLAN_IDS,
    MODEL_REQUIREMENTS,
    PLANS,
    get_plan,
    get_plan_name,
    normalize_plan_id,
    plan_id_for_price,
    price_id_for_plan,
    required_plan_for_model,
    tier_rank,
)


class TestPlanDefinitions:
    """Test the static plan table."""

    def test_four_plans(self):
        assert set(PLANS) == {"free", "starter", "pro", "enterprise"}

    def test_ranks_strictly_increase(self):
        ranks = [tier_rank(p) for p in ("free", "starter", "pro", "enterprise")]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ranks)
        assert tier_rank("free") == 0

    def test_prices(self):
        assert PLANS["free"].price_monthly_cents == 0
        assert PLANS["starter"].price_monthly_cents == 999
        assert PLANS["pro"].price_yearly_cents == 19999
        assert PLANS["enterprise"].price_monthly_cents == 9999

    def test_features_are_cumulative(self):
        ordered = sorted(PLANS.values(), key=lambda p: p.tier_rank)
        for lower, higher in zip(ordered, ordered[1:]):
            assert lower.features <= higher.features

    def test_enterprise_unlimited_api_calls(self):
        assert PLANS["enterprise"].api_calls_per_day is None
        assert PLANS["free"].api_calls_per_day == 5

    def test_free_plan_has_no_prices(self):
        assert PLANS["free"].is_free
        assert PLANS["free"].stripe_monthly_price_id is None


class TestLookups:
    """Test lenient and strict plan lookups."""

    def test_get_plan_unknown_falls_back_to_free(self):
        assert get_plan("nonexistent").id == FREE_PLAN_ID

    def test_get_plan_none(self):
        assert get_plan(None).id == FREE_PLAN_ID

    def test_get_plan_name_unknown_returns_free_name(self):
        assert get_plan_name("nonexistent-plan-id") == "Free"

    def test_get_plan_name_known(self):
        assert get_plan_name("pro") == "Professional"

    @pytest.mark.parametrize(("legacy", "plan_id"), sorted(LEGACY_PLAN_IDS.items()))
    def test_legacy_ids_resolve(self, legacy, plan_id):
        assert normalize_plan_id(legacy) == plan_id
        assert tier_rank(legacy) == tier_rank(plan_id)

    def test_normalize_unknown(self):
        assert normalize_plan_id("platinum") is None
        assert normalize_plan_id(None) is None

    def test_tier_rank_unknown_raises(self):
        with pytest.raises(InvalidPlan):
            tier_rank("platinum")


class TestPriceMapping:
    """Test plan <-> Stripe price resolution (price ids come from test env)."""

    def test_monthly_price(self):
        assert price_id_for_plan("starter") == "price_test_starter"
        assert price_id_for_plan("pro", "month") == "price_test_pro"

    def test_yearly_price(self):
        assert price_id_for_plan("pro", "year") == "price_test_pro_yearly"

    def test_legacy_alias_price(self):
        assert price_id_for_plan("3") == "price_test_pro"

    def test_unknown_plan_raises(self):
        with pytest.raises(InvalidPlan):
            price_id_for_plan("platinum")

    def test_free_plan_raises(self):
        with pytest.raises(InvalidPlan):
            price_id_for_plan("free")

    def test_unknown_interval_raises(self):
        with pytest.raises(InvalidPlan):
            price_id_for_plan("pro", "week")

    def test_unconfigured_price_raises(self):
        """Enterprise yearly has no price configured in the test environment."""
        with pytest.raises(InvalidPlan):
            price_id_for_plan("enterprise", "year")

    def test_plan_for_monthly_and_yearly_price(self):
        assert plan_id_for_price("price_test_pro") == "pro"
        assert plan_id_for_price("price_test_starter_yearly") == "starter"

    def test_plan_for_unknown_price_is_free(self):
        assert plan_id_for_price("price_unknown") == FREE_PLAN_ID
        assert plan_id_for_price(None) == FREE_PLAN_ID


class TestModelRequirements:
    def test_known_models(self):
        assert required_plan_for_model("deepseek") == "free"
        assert required_plan_for_model("gpt4") == "starter"
        assert required_plan_for_model("dalle3") == "pro"
        assert required_plan_for_model("custom-model") == "enterprise"

    def test_unknown_model(self):
        assert required_plan_for_model("gpt-99") is None

    def test_every_model_maps_to_a_plan(self):
        assert set(MODEL_REQUIREMENTS.values()) <= set(PLANS)
