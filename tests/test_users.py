"""
tests/test_users.py
Tests for profile self-service and companion listings.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from shared.models.models import Profile
from tests.conftest import auth_headers


# ── Profile ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_me(client: AsyncClient, client_profile: Profile):
    response = await client.get("/api/users/me", headers=auth_headers(client_profile))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == client_profile.email
    assert data["user_type"] == "client"
    assert Decimal(data["total_earnings"]) == 0


@pytest.mark.asyncio
async def test_update_me_changes_only_given_fields(client: AsyncClient, client_profile: Profile):
    response = await client.put(
        "/api/users/me",
        headers=auth_headers(client_profile),
        json={"avatar_url": "https://cdn.example.com/a.png"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["avatar_url"] == "https://cdn.example.com/a.png"
    assert data["display_name"] == client_profile.display_name


@pytest.mark.asyncio
async def test_update_me_ignores_privileged_fields(client: AsyncClient, client_profile: Profile):
    response = await client.put(
        "/api/users/me",
        headers=auth_headers(client_profile),
        json={"user_type": "admin", "total_earnings": "1000"},
    )
    assert response.status_code == 200
    assert response.json()["user_type"] == "client"
    assert Decimal(response.json()["total_earnings"]) == 0


# ── Companions ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_companion_updates_listing(client: AsyncClient, companion_profile: Profile):
    response = await client.put(
        "/api/companions/me",
        headers=auth_headers(companion_profile),
        json={"hourly_rate": "80.00", "bio": "Jazz nights", "is_available": True},
    )
    assert response.status_code == 200
    assert Decimal(response.json()["hourly_rate"]) == Decimal("80")

    response = await client.get(f"/api/companions/{companion_profile.id}")
    assert response.json()["bio"] == "Jazz nights"
    assert response.json()["display_name"] == companion_profile.display_name


@pytest.mark.asyncio
async def test_client_cannot_create_listing(client: AsyncClient, client_profile: Profile):
    response = await client.put(
        "/api/companions/me",
        headers=auth_headers(client_profile),
        json={"hourly_rate": "80.00"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_hides_unavailable_companions(client: AsyncClient, companion_profile: Profile):
    response = await client.get("/api/companions")
    assert [c["id"] for c in response.json()] == [str(companion_profile.id)]

    await client.put(
        "/api/companions/me",
        headers=auth_headers(companion_profile),
        json={"hourly_rate": "100.00", "is_available": False},
    )
    response = await client.get("/api/companions")
    assert response.json() == []


@pytest.mark.asyncio
async def test_unknown_companion_returns_404(client: AsyncClient, client_profile: Profile):
    response = await client.get(f"/api/companions/{client_profile.id}")
    assert response.status_code == 404
