"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


# ── Profiles ──────────────────────────────────────────────────

class ProfileResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    user_type: str
    display_name: Optional[str]
    avatar_url: Optional[str]
    total_earnings: Decimal
    created_at: datetime


class ProfileSummary(BaseSchema):
    """Display-only slice of a profile, joined onto bookings and conversations."""
    id: uuid.UUID
    display_name: Optional[str]
    avatar_url: Optional[str]


class ProfileUpdateRequest(BaseSchema):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=2000)


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    user_type: Literal["client", "companion"]
    display_name: Optional[str] = Field(None, max_length=255)


class SignInRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class PasswordResetRequest(BaseSchema):
    email: EmailStr


class PasswordChangeRequest(BaseSchema):
    password: str = Field(..., min_length=6, max_length=128)


class SessionResponse(BaseSchema):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None  # seconds
    user: ProfileResponse


class RegisterResponse(BaseSchema):
    user: ProfileResponse
    # Absent when the provider requires email confirmation before sign-in
    session: Optional[SessionResponse] = None


class CurrentSessionResponse(BaseSchema):
    user: ProfileResponse
    provider_user: Dict[str, Any]


# ── Companions ────────────────────────────────────────────────

class CompanionUpsertRequest(BaseSchema):
    hourly_rate: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    bio: Optional[str] = Field(None, max_length=2000)
    is_available: bool = True


class CompanionResponse(BaseSchema):
    id: uuid.UUID
    hourly_rate: Decimal
    bio: Optional[str]
    is_available: bool
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


# ── Bookings ──────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    companion_id: uuid.UUID
    start_time: datetime
    duration_hours: Decimal = Field(..., gt=0, le=24, decimal_places=2)
    service_type: str = Field(..., min_length=1, max_length=100)
    location: Optional[str] = Field(None, max_length=500)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_time")
    @classmethod
    def start_time_must_be_future(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("start_time must be in the future")
        return v


class BookingResponse(BaseSchema):
    id: uuid.UUID
    client_id: uuid.UUID
    companion_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    duration_hours: Decimal
    service_type: str
    location: Optional[str]
    special_requests: Optional[str]
    notes: Optional[str]
    status: str
    payment_status: str
    payment_intent_id: Optional[str]
    total_amount: Decimal
    platform_fee: Decimal
    companion_earnings: Decimal
    refunded_amount: Optional[Decimal]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[uuid.UUID]
    cancelled_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class BookingWithPartiesResponse(BookingResponse):
    client: Optional[ProfileSummary] = None
    companion: Optional[ProfileSummary] = None


class BookingStatusUpdateRequest(BaseSchema):
    status: Literal["pending", "confirmed", "completed", "cancelled"]
    notes: Optional[str] = Field(None, max_length=1000)


class BookingCancelRequest(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)


# ── Payments ──────────────────────────────────────────────────

class PaymentAuthorizationResponse(BaseSchema):
    """Client-facing checkout handle: order id plus the public key id."""
    authorization_id: str
    key_id: str
    amount: int  # minor units
    currency: str
    booking_id: uuid.UUID


class BookingCreateResponse(BaseSchema):
    booking: BookingResponse
    authorization: PaymentAuthorizationResponse


class PaymentConfirmRequest(BaseSchema):
    authorization_id: str = Field(..., min_length=1)
    # Checkout handler fields; verified when present
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class PaymentConfirmResponse(BaseSchema):
    authorization_id: str
    gateway_status: str
    applied: bool
    booking_id: Optional[uuid.UUID] = None


class RefundRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class RefundResponse(BaseSchema):
    refund_id: str
    booking_id: uuid.UUID
    amount: Decimal
    payment_status: str
    status: str


# ── Messaging ─────────────────────────────────────────────────

class ConversationStartRequest(BaseSchema):
    participant_id: uuid.UUID


class ConversationResponse(BaseSchema):
    id: uuid.UUID
    participant_1: uuid.UUID
    participant_2: uuid.UUID
    unread_count_1: int
    unread_count_2: int
    last_message_at: Optional[datetime]
    last_message_preview: Optional[str]
    created_at: datetime


class ConversationWithParticipantsResponse(ConversationResponse):
    participant_1_profile: Optional[ProfileSummary] = None
    participant_2_profile: Optional[ProfileSummary] = None


class ChatMessageCreateRequest(BaseSchema):
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: str = Field("text", max_length=20)


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    recipient_id: uuid.UUID
    content: str
    message_type: str
    read_at: Optional[datetime]
    created_at: datetime


# ── Analytics ─────────────────────────────────────────────────

class TrackEventRequest(BaseSchema):
    event_type: str = Field(..., min_length=1, max_length=100)
    event_data: Dict[str, Any] = Field(default_factory=dict)


class UserMetrics(BaseSchema):
    total: int
    active: int


class BookingMetrics(BaseSchema):
    total: int
    completed: int
    revenue: Decimal
    platform_fees: Decimal


class DashboardMetricsResponse(BaseSchema):
    time_range: str
    since: datetime
    users: UserMetrics
    bookings: BookingMetrics


class UserEngagementResponse(BaseSchema):
    user_id: uuid.UUID
    last_activity: Optional[datetime]
    total_events: int
    event_types: Dict[str, int]
