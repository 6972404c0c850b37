"""Service layer package."""

from .booking_service import BookingService
from .customer_service import CustomerService, derive_customer_status
from .package_service import PackageService
from .payment_service import PaymentService, map_provider_status

__all__ = [
    "BookingService",
    "CustomerService",
    "PackageService",
    "PaymentService",
    "derive_customer_status",
    "map_provider_status",
]
