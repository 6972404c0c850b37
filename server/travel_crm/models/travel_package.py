"""Travel package model definition."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, TimestampMixin

if TYPE_CHECKING:
    from .booking import Booking


class TravelPackage(TimestampMixin, Base):
    """A sellable trip with a fixed per-person price and a participant quota."""

    __tablename__ = "travel_packages"

    id: Mapped[UUID] = mapped_column(PgUUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    destination: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Per-participant price
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quota: Mapped[int] = mapped_column(Integer, nullable=False)

    # Sales window [start_date, end_date)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    image_url: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_travel_package_price_positive"),
        CheckConstraint("quota >= 0", name="ck_travel_package_quota_non_negative"),
        CheckConstraint("end_date > start_date", name="ck_travel_package_window_ordered"),
    )

    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="package")

    def __repr__(self) -> str:
        return (
            f"<TravelPackage(id={self.id}, name='{self.name}', "
            f"price={self.price}, quota={self.quota}, is_active={self.is_active})>"
        )
