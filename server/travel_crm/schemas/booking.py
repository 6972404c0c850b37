"""Booking-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.booking import BookingStatus
from ..models.payment import PaymentStatus
from .common import Pagination


class CreateBookingRequest(BaseModel):
    """Request schema for creating a booking."""

    customer_id: Optional[UUID] = Field(
        None,
        description="Customer the booking is for; ignored for customer callers"
    )
    package_id: UUID = Field(..., description="Package to book")
    participants: int = Field(..., ge=1, description="Number of participants")
    departure_date: datetime = Field(..., description="Planned departure date (ISO 8601)")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-form notes")


class UpdateBookingRequest(BaseModel):
    """Partial update of a mutable booking."""

    participants: Optional[int] = Field(None, ge=1, description="New participant count")
    departure_date: Optional[datetime] = Field(None, description="New departure date")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-form notes")

    @model_validator(mode="after")
    def check_not_empty(self) -> "UpdateBookingRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class UpdateBookingStatusRequest(BaseModel):
    """Administrative status transition."""

    status: BookingStatus = Field(..., description="Target booking status")

    @field_validator("status")
    @classmethod
    def validate_target(cls, v: BookingStatus) -> BookingStatus:
        if v not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            raise ValueError("Status can only be changed to CONFIRMED or COMPLETED")
        return v


class PaymentSummary(BaseModel):
    """Payment attached to a booking."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    amount: Decimal
    status: PaymentStatus
    payment_type: Optional[str] = None
    redirect_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Unique booking ID")
    booking_code: str = Field(..., description="Shareable booking code")
    customer_id: UUID
    package_id: UUID
    participants: int = Field(..., ge=1)
    total_amount: Decimal
    departure_date: datetime
    status: BookingStatus
    notes: Optional[str] = None
    payment: Optional[PaymentSummary] = None
    created_at: datetime
    updated_at: datetime


class BookingListResponse(BaseModel):
    """Page of bookings."""

    items: List[BookingResponse]
    pagination: Pagination
