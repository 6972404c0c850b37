"""Booking model definition."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, TimestampMixin

if TYPE_CHECKING:
    from .customer import Customer
    from .payment import Payment
    from .travel_package import TravelPackage


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"
    COMPLETED = "COMPLETED"


# Bookings in these states consume package quota
SLOT_HOLDING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.PAID,
    BookingStatus.CONFIRMED,
})

# Bookings in these states count towards the customer's tier
PAID_STATUSES = frozenset({
    BookingStatus.PAID,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
})

# Participants and total amount are frozen once money has moved
FINANCIALLY_LOCKED_STATUSES = PAID_STATUSES


class Booking(TimestampMixin, Base):
    """Booking entity: a customer's reservation of slots on a travel package."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(PgUUID(as_uuid=True), primary_key=True, default=uuid4)

    booking_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    customer_id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    package_id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("travel_packages.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    participants: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    departure_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        CheckConstraint("participants >= 1", name="ck_booking_participants_positive"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("length(booking_code) > 0", name="ck_booking_code_not_empty"),
        Index("ix_bookings_package_id_status", "package_id", "status"),
    )

    customer: Mapped["Customer"] = relationship("Customer", back_populates="bookings")
    package: Mapped["TravelPackage"] = relationship("TravelPackage", back_populates="bookings")
    payment: Mapped["Payment | None"] = relationship(
        "Payment",
        back_populates="booking",
        uselist=False
    )

    @property
    def is_slot_holding(self) -> bool:
        return self.status in SLOT_HOLDING_STATUSES

    @property
    def is_financially_locked(self) -> bool:
        return self.status in FINANCIALLY_LOCKED_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, code='{self.booking_code}', package_id={self.package_id}, "
            f"participants={self.participants}, status={self.status})>"
        )
