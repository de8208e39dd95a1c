"""
tests/test_bookings.py
Tests for the booking lifecycle:
create (priced + authorized) → confirm → complete, and cancellation.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.service import compute_amounts
from shared.models.models import Booking, BookingStatus, Companion, PaymentStatus, Profile
from tests.conftest import auth_headers


def booking_payload(companion: Profile, hours=2, days_ahead=3) -> dict:
    return {
        "companion_id": str(companion.id),
        "start_time": (datetime.now(timezone.utc) + timedelta(days=days_ahead)).isoformat(),
        "duration_hours": hours,
        "service_type": "city_tour",
        "location": "Old Town",
    }


async def create_booking(client: AsyncClient, client_profile: Profile, companion: Profile, **kw) -> dict:
    response = await client.post(
        "/api/bookings", headers=auth_headers(client_profile), json=booking_payload(companion, **kw)
    )
    assert response.status_code == 201, response.text
    return response.json()


# ── Pricing ────────────────────────────────────────────────────────────────────

def test_fee_split_reconciles():
    total, fee, earnings = compute_amounts(Decimal("100"), Decimal("2"))
    assert (total, fee, earnings) == (Decimal("200.00"), Decimal("30.00"), Decimal("170.00"))


def test_fee_rounds_half_up_and_still_reconciles():
    total, fee, earnings = compute_amounts(Decimal("33.33"), Decimal("1.5"))
    assert total == Decimal("50.00")  # 49.995 → 50.00
    assert fee == Decimal("7.50")
    assert fee + earnings == total


# ── Creation ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_prices_and_authorizes(
    client: AsyncClient,
    client_profile: Profile,
    companion_profile: Profile,
    gateway,
):
    data = await create_booking(client, client_profile, companion_profile)
    booking = data["booking"]
    assert booking["status"] == "pending"
    assert booking["payment_status"] == "pending"
    assert Decimal(booking["total_amount"]) == Decimal("200")
    assert Decimal(booking["platform_fee"]) == Decimal("30")
    assert Decimal(booking["companion_earnings"]) == Decimal("170")

    authorization = data["authorization"]
    assert authorization["amount"] == 20000
    assert booking["payment_intent_id"] == authorization["authorization_id"]
    assert gateway.orders[authorization["authorization_id"]]["notes"]["booking_id"] == booking["id"]


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(
    client: AsyncClient, client_profile: Profile, companion_profile: Profile
):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(client_profile),
        json=booking_payload(companion_profile, days_ahead=-1),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cannot_book_yourself(client: AsyncClient, companion_profile: Profile):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(companion_profile),
        json=booking_payload(companion_profile),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_companion_returns_404(client: AsyncClient, client_profile: Profile):
    ghost = Profile(id=uuid.uuid4(), email="ghost@example.com")
    response = await client.post(
        "/api/bookings", headers=auth_headers(client_profile), json=booking_payload(ghost)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_unavailable_companion_rejected(
    client: AsyncClient,
    db: AsyncSession,
    client_profile: Profile,
    companion_profile: Profile,
):
    companion = await db.scalar(select(Companion).where(Companion.id == companion_profile.id))
    companion.is_available = False
    await db.commit()

    response = await client.post(
        "/api/bookings", headers=auth_headers(client_profile), json=booking_payload(companion_profile)
    )
    assert response.status_code == 400


# ── Reading ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_bookings_for_both_parties(
    client: AsyncClient,
    client_profile: Profile,
    companion_profile: Profile,
    other_client: Profile,
):
    early = await create_booking(client, client_profile, companion_profile, days_ahead=2)
    late = await create_booking(client, client_profile, companion_profile, days_ahead=5)

    for viewer in (client_profile, companion_profile):
        response = await client.get("/api/bookings", headers=auth_headers(viewer))
        assert response.status_code == 200
        ids = [b["id"] for b in response.json()]
        assert ids == [late["booking"]["id"], early["booking"]["id"]]  # newest start first

    listed = (await client.get("/api/bookings", headers=auth_headers(client_profile))).json()[0]
    assert listed["companion"]["display_name"] == companion_profile.display_name
    assert listed["client"]["id"] == str(client_profile.id)

    response = await client.get("/api/bookings", headers=auth_headers(other_client))
    assert response.json() == []


@pytest.mark.asyncio
async def test_get_booking_hidden_from_outsiders(
    client: AsyncClient,
    client_profile: Profile,
    companion_profile: Profile,
    other_client: Profile,
    admin_profile: Profile,
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]

    assert (await client.get(f"/api/bookings/{booking_id}", headers=auth_headers(other_client))).status_code == 403
    assert (await client.get(f"/api/bookings/{booking_id}", headers=auth_headers(admin_profile))).status_code == 200


# ── Status Transitions ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_companion_confirms_then_completes(
    client: AsyncClient, client_profile: Profile, companion_profile: Profile
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]
    headers = auth_headers(companion_profile)

    response = await client.patch(f"/api/bookings/{booking_id}/status", headers=headers, json={"status": "confirmed"})
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert response.json()["confirmed_at"] is not None

    response = await client.patch(
        f"/api/bookings/{booking_id}/status",
        headers=headers,
        json={"status": "completed", "notes": "Great tour"},
    )
    assert response.status_code == 200
    assert response.json()["notes"] == "Great tour"


@pytest.mark.asyncio
async def test_illegal_transition_returns_409(
    client: AsyncClient, client_profile: Profile, companion_profile: Profile
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]
    headers = auth_headers(companion_profile)

    response = await client.patch(f"/api/bookings/{booking_id}/status", headers=headers, json={"status": "completed"})
    assert response.status_code == 409

    response = await client.patch(f"/api/bookings/{booking_id}/status", headers=headers, json={"status": "pending"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_terminal_booking_cannot_change(
    client: AsyncClient, client_profile: Profile, companion_profile: Profile
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]
    await client.post(
        f"/api/bookings/{booking_id}/cancel", headers=auth_headers(client_profile), json={"reason": "Plans changed"}
    )

    response = await client.patch(
        f"/api/bookings/{booking_id}/status", headers=auth_headers(companion_profile), json={"status": "confirmed"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_outsider_cannot_update_status(
    client: AsyncClient, client_profile: Profile, companion_profile: Profile, other_client: Profile
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]
    response = await client.patch(
        f"/api/bookings/{booking_id}/status", headers=auth_headers(other_client), json={"status": "confirmed"}
    )
    assert response.status_code == 403


# ── Cancellation ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_client_cancels_booking(
    client: AsyncClient, db: AsyncSession, client_profile: Profile, companion_profile: Profile
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]

    response = await client.post(
        f"/api/bookings/{booking_id}/cancel", headers=auth_headers(client_profile), json={"reason": "Sick"}
    )
    assert response.status_code == 200

    booking = await db.scalar(select(Booking).where(Booking.id == uuid.UUID(booking_id)))
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "Sick"
    assert booking.cancelled_by == client_profile.id
    assert booking.payment_status == PaymentStatus.PENDING  # refunds are explicit


@pytest.mark.asyncio
async def test_non_participant_cancel_leaves_booking_unchanged(
    client: AsyncClient,
    db: AsyncSession,
    client_profile: Profile,
    companion_profile: Profile,
    admin_profile: Profile,
):
    booking_id = (await create_booking(client, client_profile, companion_profile))["booking"]["id"]

    response = await client.post(
        f"/api/bookings/{booking_id}/cancel", headers=auth_headers(admin_profile), json={"reason": "No"}
    )
    assert response.status_code == 403

    booking = await db.scalar(select(Booking).where(Booking.id == uuid.UUID(booking_id)))
    assert booking.status == BookingStatus.PENDING
    assert booking.cancellation_reason is None
