"""Models module exporting all database models."""

from .booking import (
    FINANCIALLY_LOCKED_STATUSES,
    PAID_STATUSES,
    SLOT_HOLDING_STATUSES,
    Booking,
    BookingStatus,
)
from .customer import Customer, CustomerStatus
from .payment import ALLOWED_PAYMENT_TRANSITIONS, Payment, PaymentStatus
from .travel_package import TravelPackage
from .user import User, UserRole

__all__ = [
    # Actors
    "User",
    "UserRole",
    "Customer",
    "CustomerStatus",

    # Catalog
    "TravelPackage",

    # Booking entities
    "Booking",
    "BookingStatus",
    "SLOT_HOLDING_STATUSES",
    "PAID_STATUSES",
    "FINANCIALLY_LOCKED_STATUSES",

    # Payment entities
    "Payment",
    "PaymentStatus",
    "ALLOWED_PAYMENT_TRANSITIONS",
]
