"""Customer service: tier derivation from paid bookings."""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..core.observability import metrics_collector
from ..models.booking import PAID_STATUSES, Booking
from ..models.customer import Customer, CustomerStatus

logger = logging.getLogger(__name__)

LOYAL_THRESHOLD = 3
ACTIVE_THRESHOLD = 1


def derive_customer_status(paid_booking_count: int) -> CustomerStatus:
    """Map a paid-booking count to a customer tier."""
    if paid_booking_count >= LOYAL_THRESHOLD:
        return CustomerStatus.LOYAL
    if paid_booking_count >= ACTIVE_THRESHOLD:
        return CustomerStatus.ACTIVE
    return CustomerStatus.PROSPECT


class CustomerService:
    """Service for customer lookups and status derivation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_customer_by_id(self, customer_id: UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if not customer:
            raise NotFoundError(resource_type="customer", resource_id=str(customer_id))
        return customer

    async def count_paid_bookings(self, customer_id: UUID) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.customer_id == customer_id,
            Booking.status.in_([status.value for status in PAID_STATUSES]),
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def update_customer_status(self, customer_id: UUID) -> Customer:
        """
        Recompute a customer's tier from their paid bookings.

        Runs inside the caller's transaction and does not commit. Pending
        booking changes are flushed first so the count sees them.
        """
        customer = await self.get_customer_by_id(customer_id)

        await self.db.flush()
        paid_count = await self.count_paid_bookings(customer_id)
        new_status = derive_customer_status(paid_count)

        if customer.status != new_status:
            logger.info(
                "Customer status changed",
                extra={
                    "customer_id": str(customer_id),
                    "old_status": CustomerStatus(customer.status).value,
                    "new_status": new_status.value,
                    "paid_bookings": paid_count
                }
            )
            customer.status = new_status
            metrics_collector.record_customer_status_change(new_status.value)

        return customer
