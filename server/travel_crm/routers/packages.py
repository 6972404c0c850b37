"""Travel package router: package detail and availability."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import Principal, get_current_principal
from ..schemas.common import ApiResponse
from ..schemas.package import Availability, PackageDetail
from ..services.package_service import PackageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/packages", tags=["packages"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
PRINCIPAL_DEPENDENCY = Depends(get_current_principal)


@router.get("/{package_id}", response_model=ApiResponse[PackageDetail])
async def get_package(
    package_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = PRINCIPAL_DEPENDENCY
) -> ApiResponse[PackageDetail]:
    """Get a package with its booked participants and free slots."""
    detail = await PackageService(db).get_package_detail(package_id)
    return ApiResponse(message="Package retrieved successfully", data=detail)


@router.get("/{package_id}/availability", response_model=ApiResponse[Availability])
async def check_availability(
    package_id: UUID,
    participants: int = Query(1, ge=1, description="Participants to fit"),
    db: AsyncSession = DB_DEPENDENCY,
    principal: Principal = PRINCIPAL_DEPENDENCY
) -> ApiResponse[Availability]:
    """Check whether a package has room for the given number of participants."""
    availability = await PackageService(db).check_availability(package_id, participants)

    logger.debug(
        "Availability checked",
        extra={
            "package_id": str(package_id),
            "participants": participants,
            "available_slots": availability.available_slots
        }
    )

    return ApiResponse(message="Availability checked successfully", data=availability)
