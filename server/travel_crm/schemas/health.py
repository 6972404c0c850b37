"""Health-related Pydantic schemas."""

from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health status enumeration."""
    HEALTHY = "healthy"
    READY = "ready"
    NOT_READY = "not_ready"


class ReadinessResponse(BaseModel):
    """Readiness check with per-dependency results."""

    status: HealthStatus = Field(..., description="ready or not_ready")
    service: str = Field(..., description="Service name")
    checks: dict[str, str] = Field(default_factory=dict, description="Dependency name to ok/error")
