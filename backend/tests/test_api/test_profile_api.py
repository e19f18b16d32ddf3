"""Tests for profile API endpoints: GET/PATCH /api/v1/profile/me."""

import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.billing.errors import ProviderError
from subledger.models.user import Profile
from subledger.services.subscription_service import get_billing_customer, insert_billing_customer


@pytest_asyncio.fixture
async def customer(db_session: AsyncSession, test_profile: Profile) -> str:
    await insert_billing_customer(db_session, test_profile.id, "cus_test_123", name=test_profile.customer_name)
    await db_session.commit()
    return "cus_test_123"


class TestGetProfile:
    async def test_me(self, client: AsyncClient, auth_headers, test_profile: Profile):
        resp = await client.get("/api/v1/profile/me", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == str(test_profile.id)
        assert data["email"] == test_profile.email
        assert data["display_name"] is None
        assert data["is_active"] is True

    async def test_me_unauthenticated(self, client: AsyncClient):
        resp = await client.get("/api/v1/profile/me")
        assert resp.status_code == 401

    async def test_inactive_profile_rejected(
        self, client: AsyncClient, auth_headers, db_session: AsyncSession, test_profile: Profile
    ):
        test_profile.is_active = False
        await db_session.commit()

        resp = await client.get("/api/v1/profile/me", headers=auth_headers)

        assert resp.status_code == 401
        assert resp.json()["detail"] == "User account is inactive"


class TestUpdateProfile:
    async def test_partial_update(self, client: AsyncClient, auth_headers, fake_stripe):
        resp = await client.patch("/api/v1/profile/me", json={"username": "ann"}, headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "ann"
        assert data["display_name"] is None
        assert fake_stripe.calls == []  # no customer yet

    async def test_empty_username_rejected(self, client: AsyncClient, auth_headers):
        resp = await client.patch("/api/v1/profile/me", json={"username": ""}, headers=auth_headers)
        assert resp.status_code == 422

    async def test_name_pushed_to_stripe(
        self, client: AsyncClient, auth_headers, db_session: AsyncSession, test_profile: Profile, fake_stripe, customer
    ):
        resp = await client.patch("/api/v1/profile/me", json={"display_name": "Ann Example"}, headers=auth_headers)

        assert resp.status_code == 200
        assert fake_stripe.customers[customer]["name"] == "Ann Example"
        stored = await get_billing_customer(db_session, test_profile.id)
        assert stored.name == "Ann Example"

    async def test_avatar_change_not_pushed(self, client: AsyncClient, auth_headers, fake_stripe, customer):
        resp = await client.patch(
            "/api/v1/profile/me", json={"avatar_url": "https://example.com/a.png"}, headers=auth_headers
        )

        assert resp.status_code == 200
        assert "update_customer" not in fake_stripe.calls

    async def test_stripe_failure_does_not_block_update(
        self, client: AsyncClient, auth_headers, fake_stripe, customer
    ):
        fake_stripe.fail_with = ProviderError()

        resp = await client.patch("/api/v1/profile/me", json={"display_name": "Ann"}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["display_name"] == "Ann"
        assert fake_stripe.calls == ["update_customer"]
