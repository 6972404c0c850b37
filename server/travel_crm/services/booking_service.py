"""Booking service for business logic operations."""

import logging
import math
import secrets
import string
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.exceptions import CapacityFullError, InvalidStateError, NotFoundError
from ..core.observability import metrics_collector
from ..models.booking import FINANCIALLY_LOCKED_STATUSES, Booking, BookingStatus
from ..models.customer import Customer
from ..models.payment import PaymentStatus
from ..models.travel_package import TravelPackage
from ..schemas.booking import BookingListResponse, BookingResponse, CreateBookingRequest, UpdateBookingRequest
from ..schemas.common import Pagination
from .customer_service import CustomerService
from .package_service import PackageService

logger = logging.getLogger(__name__)

# Administrative transitions after payment
ADMIN_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PAID: frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED}),
}


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.package_service = PackageService(db)
        self.customer_service = CustomerService(db)

    def _generate_booking_code(self, length: int = 8) -> str:
        """Generate a random booking code."""
        alphabet = string.ascii_uppercase + string.digits
        return "BK" + "".join(secrets.choice(alphabet) for _ in range(length))

    async def _unique_booking_code(self) -> str:
        booking_code = self._generate_booking_code()
        while await self.get_booking_by_code(booking_code):
            booking_code = self._generate_booking_code()
        return booking_code

    async def _reserve_slots(self, package_id: UUID, participants: int) -> TravelPackage:
        """
        Lock the package and verify ``participants`` more people fit.

        The lock is held until the caller commits or rolls back.

        Raises:
            NotFoundError: If package not found
            InvalidStateError: If package is inactive
            CapacityFullError: If the package does not have enough free slots
        """
        availability = await self.package_service.check_availability(package_id, participants, lock=True)

        if not availability.is_available:
            logger.warning(
                "Booking rejected - insufficient slots",
                extra={
                    "package_id": str(package_id),
                    "requested_participants": participants,
                    "available_slots": availability.available_slots
                }
            )
            metrics_collector.record_capacity_rejection()
            raise CapacityFullError(
                package_id=str(package_id),
                requested=participants,
                available_slots=availability.available_slots
            )

        return await self.package_service.get_package_by_id(package_id)

    async def create_booking(self, request: CreateBookingRequest, customer_id: UUID) -> Booking:
        """
        Create a PENDING booking after an atomic capacity check.

        Args:
            request: Booking creation request
            customer_id: Customer the booking belongs to

        Returns:
            Created booking entity

        Raises:
            NotFoundError: If customer or package not found
            InvalidStateError: If package is inactive
            CapacityFullError: If the package does not have enough free slots
        """
        await self.customer_service.get_customer_by_id(customer_id)
        package = await self._reserve_slots(request.package_id, request.participants)

        booking = Booking(
            booking_code=await self._unique_booking_code(),
            customer_id=customer_id,
            package_id=package.id,
            participants=request.participants,
            total_amount=package.price * request.participants,
            departure_date=request.departure_date,
            status=BookingStatus.PENDING,
            notes=request.notes,
            payment=None,
        )

        self.db.add(booking)
        await self.db.commit()

        metrics_collector.record_booking_created()
        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(booking.id),
                "booking_code": booking.booking_code,
                "customer_id": str(customer_id),
                "package_id": str(package.id),
                "participants": booking.participants,
                "total_amount": str(booking.total_amount)
            }
        )

        return booking

    async def update_booking(self, booking_id: UUID, request: UpdateBookingRequest) -> Booking:
        """
        Apply a partial update to a mutable booking.

        Increasing participants re-checks capacity for the increase only,
        under the package lock. The total is recomputed from the current
        package price whenever participants change.

        Raises:
            NotFoundError: If booking not found
            InvalidStateError: If the booking is paid, completed or canceled
            CapacityFullError: If the increase does not fit
        """
        booking = await self.get_booking_by_id_or_raise(booking_id, for_update=True)

        if booking.status in FINANCIALLY_LOCKED_STATUSES:
            raise InvalidStateError(
                detail="Cannot modify a booking that is already paid or completed",
                code="BOOKING_LOCKED",
                extensions={"booking_id": str(booking_id), "status": booking.status}
            )
        if booking.status == BookingStatus.CANCELED:
            raise InvalidStateError(
                detail="Cannot modify a canceled booking",
                code="BOOKING_CANCELED",
                extensions={"booking_id": str(booking_id)}
            )

        fields = request.model_fields_set
        new_participants = request.participants

        if "participants" in fields and new_participants is not None and new_participants != booking.participants:
            if booking.payment is not None and booking.payment.status == PaymentStatus.PENDING:
                raise InvalidStateError(
                    detail="Cannot change participants while a payment is in progress",
                    code="PAYMENT_IN_PROGRESS",
                    extensions={"booking_id": str(booking_id), "order_id": booking.payment.order_id}
                )

            delta = new_participants - booking.participants
            if delta > 0:
                package = await self._reserve_slots(booking.package_id, delta)
            else:
                package = await self.package_service.get_package_by_id(booking.package_id)

            logger.info(
                "Booking participants changed",
                extra={
                    "booking_id": str(booking_id),
                    "old_participants": booking.participants,
                    "new_participants": new_participants
                }
            )
            booking.participants = new_participants
            booking.total_amount = package.price * new_participants

        if "departure_date" in fields and request.departure_date is not None:
            booking.departure_date = request.departure_date
        if "notes" in fields:
            booking.notes = request.notes

        await self.db.commit()

        logger.info(
            "Booking updated successfully",
            extra={"booking_id": str(booking_id), "fields": sorted(fields)}
        )

        return booking

    async def cancel_booking(self, booking_id: UUID) -> Booking:
        """
        Cancel a booking, releasing its slots.

        Canceling an already canceled booking returns it unchanged.

        Raises:
            NotFoundError: If booking not found
            InvalidStateError: If the booking is paid, confirmed or completed
        """
        booking = await self.get_booking_by_id_or_raise(booking_id, for_update=True)

        if booking.status == BookingStatus.CANCELED:
            logger.info(
                "Booking already canceled - returning existing booking",
                extra={"booking_id": str(booking_id)}
            )
            return booking

        if booking.status == BookingStatus.COMPLETED:
            raise InvalidStateError(
                detail="Cannot cancel a completed booking",
                code="BOOKING_COMPLETED",
                extensions={"booking_id": str(booking_id)}
            )
        if booking.status in FINANCIALLY_LOCKED_STATUSES:
            raise InvalidStateError(
                detail="Cannot cancel a paid booking; request a refund through the payment provider",
                code="BOOKING_PAID",
                extensions={"booking_id": str(booking_id), "status": booking.status}
            )

        booking.status = BookingStatus.CANCELED
        await self.db.commit()

        metrics_collector.record_booking_canceled("user")
        logger.info(
            "Booking canceled successfully",
            extra={
                "booking_id": str(booking_id),
                "booking_code": booking.booking_code,
                "participants_released": booking.participants
            }
        )

        return booking

    async def update_booking_status(
        self,
        booking: Booking,
        status: BookingStatus,
        commit: bool = True,
    ) -> Booking:
        """
        Write a booking status directly.

        Callers are responsible for checking the transition is allowed.
        When the booking becomes PAID or COMPLETED the customer's tier is
        recomputed in the same transaction.
        """
        old_status = booking.status
        booking.status = status

        if status in (BookingStatus.PAID, BookingStatus.COMPLETED):
            await self.customer_service.update_customer_status(booking.customer_id)

        if commit:
            await self.db.commit()

        logger.info(
            "Booking status updated",
            extra={
                "booking_id": str(booking.id),
                "old_status": BookingStatus(old_status).value,
                "new_status": status.value
            }
        )

        return booking

    async def advance_booking_status(self, booking_id: UUID, status: BookingStatus) -> Booking:
        """
        Administrative transition of a paid booking.

        Allowed: PAID to CONFIRMED, PAID to COMPLETED, CONFIRMED to COMPLETED.

        Raises:
            NotFoundError: If booking not found
            InvalidStateError: If the transition is not allowed
        """
        booking = await self.get_booking_by_id_or_raise(booking_id, for_update=True)
        current = BookingStatus(booking.status)

        if status not in ADMIN_TRANSITIONS.get(current, frozenset()):
            raise InvalidStateError(
                detail=f"Cannot change booking status from {current.value} to {status.value}",
                code="INVALID_TRANSITION",
                extensions={
                    "booking_id": str(booking_id),
                    "current_status": current.value,
                    "requested_status": status.value
                }
            )

        return await self.update_booking_status(booking, status)

    async def get_booking_by_id(self, booking_id: UUID, for_update: bool = False) -> Booking | None:
        """Get booking by ID with its payment loaded."""
        stmt = (
            select(Booking)
            .options(selectinload(Booking.payment))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Booking)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_by_id_or_raise(self, booking_id: UUID, for_update: bool = False) -> Booking:
        """Get booking by ID or raise NotFoundError."""
        booking = await self.get_booking_by_id(booking_id, for_update=for_update)
        if not booking:
            logger.warning(
                "Booking not found",
                extra={"booking_id": str(booking_id)}
            )
            raise NotFoundError(
                resource_type="booking",
                resource_id=str(booking_id)
            )
        return booking

    async def get_booking_by_code(self, code: str) -> Booking | None:
        """Get booking by booking code."""
        stmt = select(Booking).options(selectinload(Booking.payment)).where(Booking.booking_code == code)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_by_code_or_raise(self, code: str) -> Booking:
        booking = await self.get_booking_by_code(code)
        if not booking:
            raise NotFoundError(resource_type="booking", resource_id=code)
        return booking

    async def list_bookings(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[BookingStatus] = None,
        customer_id: Optional[UUID] = None,
        package_id: Optional[UUID] = None,
        search: Optional[str] = None,
        departure_from: Optional[datetime] = None,
        departure_to: Optional[datetime] = None,
    ) -> BookingListResponse:
        """
        List bookings newest first with offset pagination.

        ``search`` matches the booking code, the customer name or the
        package name, case-insensitively.
        """
        conditions = []

        if status:
            conditions.append(Booking.status == status)
        if customer_id:
            conditions.append(Booking.customer_id == customer_id)
        if package_id:
            conditions.append(Booking.package_id == package_id)
        if departure_from:
            conditions.append(Booking.departure_date >= departure_from)
        if departure_to:
            conditions.append(Booking.departure_date < departure_to)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                Booking.booking_code.ilike(pattern),
                Booking.customer.has(Customer.name.ilike(pattern)),
                Booking.package.has(TravelPackage.name.ilike(pattern)),
            ))

        count_stmt = select(func.count(Booking.id)).where(*conditions)
        total = int((await self.db.execute(count_stmt)).scalar_one())

        stmt = (
            select(Booking)
            .options(selectinload(Booking.payment))
            .where(*conditions)
            .order_by(Booking.created_at.desc(), Booking.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        bookings = list(result.scalars())

        logger.info(
            "Booking search completed",
            extra={
                "total_found": total,
                "page": page,
                "limit": limit,
                "status_filter": status.value if status else None
            }
        )

        return BookingListResponse(
            items=[BookingResponse.model_validate(booking) for booking in bookings],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if total else 0
            )
        )
