"""Booking router for booking lifecycle operations."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import (
    CUSTOMER_ROLE,
    Principal,
    ensure_booking_access,
    get_current_principal,
    get_payment_gateway,
    require_roles,
)
from ..core.exceptions import ValidationError
from ..integrations.midtrans import MidtransClient
from ..models.booking import BookingStatus
from ..models.user import UserRole
from ..schemas.booking import (
    BookingListResponse,
    BookingResponse,
    CreateBookingRequest,
    UpdateBookingRequest,
    UpdateBookingStatusRequest,
)
from ..schemas.common import ApiResponse
from ..schemas.payment import PaymentInitiation
from ..services.booking_service import BookingService
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)
ANY_PRINCIPAL = Depends(get_current_principal)
LOOKUP_ROLES = Depends(require_roles(UserRole.ADMIN, UserRole.SALES, UserRole.CS))
CREATE_ROLES = Depends(require_roles(UserRole.ADMIN, UserRole.SALES, CUSTOMER_ROLE))
EDIT_ROLES = Depends(require_roles(UserRole.ADMIN, UserRole.SALES))
ADMIN_ONLY = Depends(require_roles(UserRole.ADMIN))
PAY_ROLES = Depends(require_roles(UserRole.ADMIN, UserRole.SALES, UserRole.CS, CUSTOMER_ROLE))


@router.get("", response_model=ApiResponse[BookingListResponse])
async def list_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[BookingStatus] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    package_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    departure_from: Optional[datetime] = Query(None),
    departure_to: Optional[datetime] = Query(None),
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = ANY_PRINCIPAL
) -> ApiResponse[BookingListResponse]:
    """
    List bookings, newest first.

    Customers only ever see their own bookings.
    """
    if principal.is_customer:
        customer_id = principal.id

    result = await BookingService(db).list_bookings(
        page=page,
        limit=limit,
        status=status,
        customer_id=customer_id,
        package_id=package_id,
        search=search,
        departure_from=departure_from,
        departure_to=departure_to
    )
    return ApiResponse(message="Bookings retrieved successfully", data=result)


@router.get("/code/{booking_code}", response_model=ApiResponse[BookingResponse])
async def get_booking_by_code(
    booking_code: str,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = LOOKUP_ROLES
) -> ApiResponse[BookingResponse]:
    """Look a booking up by its shareable code."""
    booking = await BookingService(db).get_booking_by_code_or_raise(booking_code)
    return ApiResponse(message="Booking retrieved successfully", data=BookingResponse.model_validate(booking))


@router.get("/{booking_id}", response_model=ApiResponse[BookingResponse])
async def get_booking(
    booking_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = ANY_PRINCIPAL
) -> ApiResponse[BookingResponse]:
    """Get a booking by ID."""
    booking = await BookingService(db).get_booking_by_id_or_raise(booking_id)
    ensure_booking_access(principal, booking)
    return ApiResponse(message="Booking retrieved successfully", data=BookingResponse.model_validate(booking))


@router.post("", response_model=ApiResponse[BookingResponse], status_code=201)
async def create_booking(
    request: CreateBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = CREATE_ROLES
) -> ApiResponse[BookingResponse]:
    """
    Create a PENDING booking.

    Customers always book for themselves; staff must name the customer.
    """
    if principal.is_customer:
        customer_id = principal.id
    elif request.customer_id is None:
        raise ValidationError(
            detail="customer_id is required",
            violations=[{"path": "body.customer_id", "message": "Field required"}]
        )
    else:
        customer_id = request.customer_id

    booking = await BookingService(db).create_booking(request, customer_id)

    logger.info(
        "Booking created via API",
        extra={
            "booking_id": str(booking.id),
            "created_by": str(principal.id),
            "role": principal.role
        }
    )

    return ApiResponse(message="Booking created successfully", data=BookingResponse.model_validate(booking))


@router.put("/{booking_id}", response_model=ApiResponse[BookingResponse])
async def update_booking(
    booking_id: UUID,
    request: UpdateBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = EDIT_ROLES
) -> ApiResponse[BookingResponse]:
    """Update participants, departure date or notes of a mutable booking."""
    booking = await BookingService(db).update_booking(booking_id, request)
    return ApiResponse(message="Booking updated successfully", data=BookingResponse.model_validate(booking))


@router.patch("/{booking_id}/cancel", response_model=ApiResponse[BookingResponse])
async def cancel_booking(
    booking_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = EDIT_ROLES
) -> ApiResponse[BookingResponse]:
    """Cancel a booking that has not been paid."""
    booking = await BookingService(db).cancel_booking(booking_id)
    return ApiResponse(message="Booking canceled successfully", data=BookingResponse.model_validate(booking))


@router.patch("/{booking_id}/status", response_model=ApiResponse[BookingResponse])
async def update_booking_status(
    booking_id: UUID,
    request: UpdateBookingStatusRequest,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = ADMIN_ONLY
) -> ApiResponse[BookingResponse]:
    """Confirm or complete a paid booking."""
    booking = await BookingService(db).advance_booking_status(booking_id, request.status)
    return ApiResponse(message="Booking status updated successfully", data=BookingResponse.model_validate(booking))


@router.post("/{booking_id}/pay", response_model=ApiResponse[PaymentInitiation])
async def initiate_payment(
    booking_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: MidtransClient = GATEWAY_DEPENDENCY,
    principal: Principal = PAY_ROLES
) -> ApiResponse[PaymentInitiation]:
    """Start hosted checkout for a pending booking."""
    booking = await BookingService(db).get_booking_by_id_or_raise(booking_id)
    ensure_booking_access(principal, booking)

    initiation = await PaymentService(db, gateway).initiate_payment(booking_id)
    message = (
        "Payment already initiated"
        if initiation.already_initiated
        else "Payment initiated successfully"
    )
    return ApiResponse(message=message, data=initiation)
