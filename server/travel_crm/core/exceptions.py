"""Typed errors following RFC 9457 Problem Details, and their HTTP handlers."""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .database import utcnow

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.title = title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details: Dict[str, Any] = {
            "type": self.type_uri,
            "title": self.title,
            "status": status_code,
        }
        if detail:
            self.problem_details["detail"] = detail
        if instance:
            self.problem_details["instance"] = instance
        self.problem_details.update(self.extensions)

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def message(self) -> str:
        """Human-readable message, falling back to the title."""
        return self.detail or self.title


class ValidationError(ProblemDetailsException):
    """Request data failed validation."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[list[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://travel-crm.local/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Missing, malformed, expired or unknown credentials."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://travel-crm.local/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Caller is authenticated but not allowed to perform the operation."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_roles: Optional[list[str]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_roles:
            extensions["required_roles"] = required_roles

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://travel-crm.local/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class InvalidSignatureError(AuthorizationError):
    """Payment notification signature did not verify."""

    def __init__(self, order_id: Optional[str] = None):
        super().__init__(detail="Invalid signature")
        self.problem_details["code"] = "INVALID_SIGNATURE"
        if order_id:
            self.problem_details["order_id"] = order_id


class NotFoundError(ProblemDetailsException):
    """Referenced entity does not exist."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {"resource_type": resource_type}
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://travel-crm.local/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class InvalidStateError(ProblemDetailsException):
    """Operation is not allowed in the entity's current lifecycle state."""

    def __init__(
        self,
        detail: str,
        code: str = "INVALID_STATE",
        extensions: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=400,
            title="Invalid State",
            detail=detail,
            type_uri="https://travel-crm.local/problems/invalid-state",
            instance=instance,
            extensions={"code": code, **(extensions or {})},
        )


class CapacityFullError(InvalidStateError):
    """Package does not have enough free slots for the request."""

    def __init__(self, package_id: str, requested: int, available_slots: int):
        super().__init__(
            detail=f"Not enough slots available. Only {max(available_slots, 0)} slots left.",
            code="NOT_ENOUGH_SLOTS",
            extensions={
                "package_id": package_id,
                "requested_participants": requested,
                "available_slots": available_slots,
            },
        )


class ConflictError(ProblemDetailsException):
    """Request conflicts with the current state of a resource."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://travel-crm.local/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Unexpected failure, including upstream provider failures."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://travel-crm.local/problems/internal-server-error",
            instance=instance,
            extensions={
                "error_id": error_id or str(uuid.uuid4()),
                "timestamp": utcnow().isoformat(),
            },
        )


class PaymentGatewayError(InternalServerError):
    """The payment provider call failed."""

    def __init__(self, detail: str = "Failed to create payment transaction"):
        super().__init__(detail=detail)
        self.problem_details["code"] = "PAYMENT_GATEWAY_ERROR"


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """Render a typed error as a Problem Details response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as a 400 Problem Details response."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=str(request.url))
    return JSONResponse(status_code=problem.status_code, content=problem.problem_details)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Uniqueness or constraint violations surface as 409 Conflict."""
    logger.warning(
        "Integrity constraint violated",
        extra={"path": request.url.path, "error": str(exc.orig)}
    )
    problem = ConflictError(
        detail="A record with this value already exists or violates a constraint",
        instance=str(request.url),
    )
    return JSONResponse(status_code=problem.status_code, content=problem.problem_details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Convert unhandled exceptions to a 500 Problem Details response."""
    error_id = str(uuid.uuid4())
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"path": request.url.path, "error_id": error_id}
    )

    problem_details = {
        "type": "https://travel-crm.local/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": utcnow().isoformat(),
    }

    return JSONResponse(status_code=500, content=problem_details)
