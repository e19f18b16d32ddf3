"""Plan definitions — pricing tiers, feature entitlements and model access."""

from dataclasses import dataclass

from subledger.billing.errors import InvalidPlan
from subledger.config import settings

FREE_PLAN_ID = "free"


@dataclass(frozen=True)
class Plan:
    """A subscription tier."""

    id: str
    display_name: str
    tier_rank: int  # free = 0, ascending with value
    price_monthly_cents: int  # in cents (e.g., 999 = $9.99)
    price_yearly_cents: int
    stripe_monthly_price_id: str | None  # None for free tier
    stripe_yearly_price_id: str | None
    features: frozenset[str]
    api_calls_per_day: int | None  # None = unlimited

    @property
    def is_free(self) -> bool:
        return self.tier_rank == 0


PLANS: dict[str, Plan] = {
    "free": Plan(
        id="free",
        display_name="Free",
        tier_rank=0,
        price_monthly_cents=0,
        price_yearly_cents=0,
        stripe_monthly_price_id=None,
        stripe_yearly_price_id=None,
        features=frozenset({"basic_chat"}),
        api_calls_per_day=5,
    ),
    "starter": Plan(
        id="starter",
        display_name="Starter",
        tier_rank=1,
        price_monthly_cents=999,
        price_yearly_cents=9999,
        stripe_monthly_price_id=settings.stripe_starter_price_id or None,
        stripe_yearly_price_id=settings.stripe_starter_yearly_price_id or None,
        features=frozenset({"basic_chat", "advanced_chat", "huggingface_api", "browser_agent", "priority_support"}),
        api_calls_per_day=25,
    ),
    "pro": Plan(
        id="pro",
        display_name="Professional",
        tier_rank=2,
        price_monthly_cents=1999,
        price_yearly_cents=19999,
        stripe_monthly_price_id=settings.stripe_pro_price_id or None,
        stripe_yearly_price_id=settings.stripe_pro_yearly_price_id or None,
        features=frozenset(
            {
                "basic_chat",
                "advanced_chat",
                "huggingface_api",
                "browser_agent",
                "priority_support",
                "scraping_agent",
                "deep_research",
                "ai_assistant",
            }
        ),
        api_calls_per_day=100,
    ),
    "enterprise": Plan(
        id="enterprise",
        display_name="Enterprise",
        tier_rank=3,
        price_monthly_cents=9999,
        price_yearly_cents=99999,
        stripe_monthly_price_id=settings.stripe_enterprise_price_id or None,
        stripe_yearly_price_id=settings.stripe_enterprise_yearly_price_id or None,
        features=frozenset(
            {
                "basic_chat",
                "advanced_chat",
                "huggingface_api",
                "browser_agent",
                "priority_support",
                "scraping_agent",
                "deep_research",
                "ai_assistant",
                "custom_models",
                "fine_tuning",
                "dedicated_support",
            }
        ),
        api_calls_per_day=None,
    ),
}

# Older subscription rows store numeric plan ids
LEGACY_PLAN_IDS: dict[str, str] = {"1": "free", "2": "starter", "3": "pro", "4": "enterprise"}

# Minimum plan required per AI model
MODEL_REQUIREMENTS: dict[str, str] = {
    "deepseek": "free",
    "llama": "free",
    "gpt4": "starter",
    "claude": "starter",
    "whisper": "starter",
    "stable-diffusion": "pro",
    "dalle3": "pro",
    "custom-model": "enterprise",
}

VALID_PLAN_IDS: set[str] = set(PLANS.keys())
BILLING_INTERVALS: tuple[str, ...] = ("month", "year")


def normalize_plan_id(plan_id: str | None) -> str | None:
    """Resolve legacy aliases. Returns None for unknown ids."""
    if plan_id is None:
        return None
    plan_id = LEGACY_PLAN_IDS.get(plan_id, plan_id)
    return plan_id if plan_id in PLANS else None


def get_plan(plan_id: str | None) -> Plan:
    """Get a plan by id. Defaults to free if unknown."""
    return PLANS[normalize_plan_id(plan_id) or FREE_PLAN_ID]


def get_plan_name(plan_id: str | None) -> str:
    """Display name for a plan id; the free tier's name when unknown."""
    return get_plan(plan_id).display_name


def tier_rank(plan_id: str) -> int:
    """Integer ordering of plans, free = 0. Raises InvalidPlan for unknown ids."""
    resolved = normalize_plan_id(plan_id)
    if resolved is None:
        raise InvalidPlan(f"Unknown plan '{plan_id}'")
    return PLANS[resolved].tier_rank


def price_id_for_plan(plan_id: str, interval: str = "month") -> str:
    """Stripe price id for a purchasable plan.

    Raises InvalidPlan for unknown plans, the free plan, unknown intervals and
    plans whose price is not configured.
    """
    resolved = normalize_plan_id(plan_id)
    if resolved is None:
        raise InvalidPlan(f"Unknown plan '{plan_id}'")
    if interval not in BILLING_INTERVALS:
        raise InvalidPlan(f"Unknown billing interval '{interval}'")

    plan = PLANS[resolved]
    if plan.is_free:
        raise InvalidPlan("The free plan cannot be purchased")

    price_id = plan.stripe_monthly_price_id if interval == "month" else plan.stripe_yearly_price_id
    if not price_id:
        raise InvalidPlan(f"No Stripe price configured for plan '{resolved}' ({interval}ly)")
    return price_id


def plan_id_for_price(price_id: str | None) -> str:
    """Reverse lookup: Stripe price id -> plan id. Falls back to free on miss."""
    if price_id:
        for plan in PLANS.values():
            if price_id in (plan.stripe_monthly_price_id, plan.stripe_yearly_price_id):
                return plan.id
    return FREE_PLAN_ID


def required_plan_for_model(model_id: str) -> str | None:
    """Minimum plan for a model, or None if the model is not offered."""
    return MODEL_REQUIREMENTS.get(model_id)
