"""Customer model definition."""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, TimestampMixin

if TYPE_CHECKING:
    from .booking import Booking


class CustomerStatus(str, Enum):
    """Customer tier, derived from the number of paid bookings."""
    PROSPECT = "PROSPECT"
    ACTIVE = "ACTIVE"
    LOYAL = "LOYAL"


class Customer(TimestampMixin, Base):
    """Customer entity. Customers can also authenticate to manage their own bookings."""

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(PgUUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(191), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[CustomerStatus] = mapped_column(
        String(20),
        nullable=False,
        default=CustomerStatus.PROSPECT,
        index=True
    )

    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="customer")

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, email='{self.email}', status={self.status})>"
