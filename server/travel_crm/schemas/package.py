"""Travel package Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Availability(BaseModel):
    """Result of a capacity check for a package."""

    package_id: str = Field(..., description="Package the check was made for")
    is_available: bool = Field(..., description="Whether the requested participants fit")
    available_slots: int = Field(..., description="quota minus booked participants")
    booked_participants: int = Field(..., ge=0, description="Participants in slot-holding bookings")
    requested_participants: int = Field(..., ge=1, description="Participants asked for")


class PackageDetail(BaseModel):
    """Package with live occupancy."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    destination: str
    description: Optional[str] = None
    price: Decimal
    quota: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    image_url: Optional[str] = None
    booked_participants: int = Field(..., ge=0)
    available_slots: int
