"""
services/booking/router.py
Booking endpoints for clients and companions.
Creation prices the booking from the companion's hourly rate and
returns the checkout handle the client pays against.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import service
from services.payment.gateway import PaymentGateway, get_payment_gateway
from services.payment.router import authorization_response
from shared.middleware.auth import get_current_user
from shared.models.models import BookingStatus, Profile
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingCreateResponse,
    BookingResponse,
    BookingStatusUpdateRequest,
    BookingWithPartiesResponse,
)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post("", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    booking, authorization = await service.create_booking(
        db,
        gateway,
        current_user,
        companion_id=data.companion_id,
        start_time=data.start_time,
        duration_hours=data.duration_hours,
        service_type=data.service_type,
        location=data.location,
        special_requests=data.special_requests,
    )
    return BookingCreateResponse(
        booking=BookingResponse.model_validate(booking),
        authorization=authorization_response(authorization, booking.id),
    )


@router.get("", response_model=list[BookingWithPartiesResponse])
async def list_my_bookings(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings where the caller is client or companion, newest first."""
    return await service.list_for_user(db, current_user)


@router.get("/{booking_id}", response_model=BookingWithPartiesResponse)
async def get_booking(
    booking_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_booking(db, booking_id, current_user)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.update_status(
        db, booking_id, current_user, BookingStatus(data.status), data.notes
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.cancel(db, booking_id, current_user, data.reason)
    return BookingResponse.model_validate(booking)
