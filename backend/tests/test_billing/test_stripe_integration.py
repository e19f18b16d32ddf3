"""Optional Stripe integration tests — hit real Stripe test mode API.

These tests are auto-skipped when STRIPE_SECRET_KEY is not set (e.g., in CI).
Price ids in the test environment are placeholders, so purchases are only
checked for the error they produce.
"""

import os
import uuid

import pytest
import pytest_asyncio

from subledger.billing.errors import InvalidPlan
from subledger.billing.stripe_client import BillingProviderClient

SKIP_REASON = "STRIPE_SECRET_KEY not set — skipping real Stripe integration tests"
pytestmark = pytest.mark.skipif(not os.getenv("STRIPE_SECRET_KEY"), reason=SKIP_REASON)


@pytest.fixture
def real_client() -> BillingProviderClient:
    return BillingProviderClient(
        api_key=os.environ["STRIPE_SECRET_KEY"],
        webhook_secret="whsec_unused",
        timeout=20.0,
    )


@pytest_asyncio.fixture
async def real_customer(real_client: BillingProviderClient):
    user_id = str(uuid.uuid4())
    customer = await real_client.create_customer(
        email=f"integration-{user_id[:8]}@subledger.test",
        name="Integration Test User",
        metadata={"user_id": user_id},
    )
    yield customer
    await real_client._stripe.v1.customers.delete_async(customer.id)


class TestStripeIntegration:
    """Real Stripe API tests — only run when STRIPE_SECRET_KEY is available."""

    async def test_create_real_customer(self, real_customer):
        assert real_customer.id.startswith("cus_")
        assert real_customer.email.endswith("@subledger.test")

    async def test_update_customer_name(self, real_client, real_customer):
        updated = await real_client.update_customer(real_customer.id, name="Renamed User")
        assert updated.name == "Renamed User"

    async def test_new_customer_has_no_subscriptions(self, real_client, real_customer):
        assert await real_client.list_customer_subscriptions(real_customer.id) == []

    async def test_unknown_price_is_invalid_plan(self, real_client, real_customer):
        with pytest.raises(InvalidPlan):
            await real_client.create_checkout_session(
                customer_id=real_customer.id,
                price_id="price_does_not_exist",
                success_url="http://localhost:5173/billing?session_id={CHECKOUT_SESSION_ID}",
                cancel_url="http://localhost:5173/pricing",
            )

