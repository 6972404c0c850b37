"""FastAPI routers package."""

from .bookings import router as bookings_router
from .metrics import router as metrics_router
from .packages import router as packages_router
from .payments import router as payments_router

__all__ = [
    "bookings_router",
    "metrics_router",
    "packages_router",
    "payments_router",
]
