"""Package service: capacity accounting for travel packages."""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.booking import SLOT_HOLDING_STATUSES, Booking
from ..models.travel_package import TravelPackage
from ..schemas.package import Availability, PackageDetail

logger = logging.getLogger(__name__)

_SLOT_HOLDING_VALUES = [status.value for status in SLOT_HOLDING_STATUSES]


class PackageService:
    """Service for package lookups and availability checks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_package_by_id(self, package_id: UUID) -> TravelPackage:
        """
        Get package by ID or raise NotFoundError.

        Raises:
            NotFoundError: If package not found
        """
        package = await self.db.get(TravelPackage, package_id)
        if not package:
            raise NotFoundError(resource_type="package", resource_id=str(package_id))
        return package

    async def get_package_with_lock(self, package_id: UUID) -> TravelPackage:
        """
        Get package by ID with a row lock held until the transaction ends.

        Every writer that changes the set of slot-holding bookings of a
        package takes this lock first, so a capacity check and the write it
        guards cannot interleave with another writer's.

        Raises:
            NotFoundError: If package not found
        """
        stmt = (
            select(TravelPackage)
            .where(TravelPackage.id == package_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        package = result.scalar_one_or_none()

        if not package:
            raise NotFoundError(resource_type="package", resource_id=str(package_id))
        return package

    async def count_booked_participants(self, package_id: UUID) -> int:
        """Sum of participants over the package's slot-holding bookings."""
        stmt = select(func.coalesce(func.sum(Booking.participants), 0)).where(
            Booking.package_id == package_id,
            Booking.status.in_(_SLOT_HOLDING_VALUES),
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def check_availability(
        self,
        package_id: UUID,
        requested_participants: int,
        lock: bool = False,
    ) -> Availability:
        """
        Check whether a package can take ``requested_participants`` more people.

        Args:
            package_id: Package to check
            requested_participants: Participants to fit, at least 1
            lock: Lock the package row for the rest of the transaction

        Returns:
            Availability with booked and free slot counts

        Raises:
            ValidationError: If requested_participants is below 1
            NotFoundError: If package not found
            InvalidStateError: If package is inactive
        """
        if requested_participants < 1:
            raise ValidationError(
                detail="Participants must be at least 1",
                violations=[{"path": "participants", "message": "must be greater than or equal to 1"}],
            )

        if lock:
            package = await self.get_package_with_lock(package_id)
        else:
            package = await self.get_package_by_id(package_id)

        if not package.is_active:
            raise InvalidStateError(
                detail="Travel package is not active",
                code="PACKAGE_INACTIVE",
                extensions={"package_id": str(package_id)},
            )

        booked = await self.count_booked_participants(package_id)
        available_slots = package.quota - booked

        metrics_collector.set_available_slots(str(package_id), available_slots)

        return Availability(
            package_id=str(package_id),
            is_available=available_slots >= requested_participants,
            available_slots=available_slots,
            booked_participants=booked,
            requested_participants=requested_participants,
        )

    async def get_package_detail(self, package_id: UUID) -> PackageDetail:
        """Package with its live occupancy. Inactive packages are returned too."""
        package = await self.get_package_by_id(package_id)
        booked = await self.count_booked_participants(package_id)

        return PackageDetail(
            id=package.id,
            name=package.name,
            destination=package.destination,
            description=package.description,
            price=package.price,
            quota=package.quota,
            start_date=package.start_date,
            end_date=package.end_date,
            is_active=package.is_active,
            image_url=package.image_url,
            booked_participants=booked,
            available_slots=package.quota - booked,
        )
