"""Application factory wiring the database, payment gateway, middleware and routers."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .core.config import settings
from .core.database import Database
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    integrity_error_handler,
    problem_details_handler,
    validation_exception_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_structured_logging,
    setup_tracing,
)
from .integrations.midtrans import MidtransClient
from .routers import bookings, metrics, packages, payments
from .schemas.health import HealthStatus, ReadinessResponse

# Configure structured logging
setup_structured_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Start tracing and create tables on startup; release database
    connections on shutdown.
    """
    database: Database = app.state.database

    logger.info(
        "Starting FastAPI application",
        extra={"environment": settings.environment, "debug": settings.debug}
    )

    try:
        setup_tracing(SERVICE_NAME)
        instrument_sqlalchemy(database.engine)
        logger.info("Tracing and SQLAlchemy instrumentation enabled")

        await database.create_all()
        logger.info(
            "Database schema ensured",
            extra={"database_url": database.engine.url.render_as_string(hide_password=True)}
        )
    except Exception:
        logger.exception("Failed to initialize application")
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down FastAPI application")
    await database.dispose()
    logger.info("Application shutdown complete")


def create_app(
    database: Optional[Database] = None,
    payment_gateway: Optional[MidtransClient] = None,
) -> FastAPI:
    """
    Build the booking API around a database and a payment gateway.

    Args:
        database: Database to serve from, built from settings when omitted
        payment_gateway: Midtrans client, built from settings when omitted

    Returns:
        FastAPI: Application with routers, middleware and error handlers registered
    """
    app = FastAPI(
        title="Travel CRM Booking API",
        description="Booking lifecycle, package capacity and Midtrans payment processing for a travel agency CRM",
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.state.database = database or Database(settings.database_url)
    app.state.payment_gateway = payment_gateway or MidtransClient(
        server_key=settings.midtrans_server_key,
        snap_base_url=settings.midtrans_snap_base_url,
        api_base_url=settings.midtrans_api_base_url,
        timeout=settings.midtrans_timeout_seconds,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Setup custom middleware
    setup_middleware(app, enable_logging=True)

    # Instrument FastAPI with OpenTelemetry
    instrument_fastapi(app)

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service is healthy and responsive",
        response_model=dict,
    )
    async def health_check():
        """Liveness: the process is up and serving requests."""
        return {
            "status": HealthStatus.HEALTHY.value,
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": settings.environment,
            "debug": settings.debug,
        }

    @app.get(
        "/ready",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Readiness Check",
        description="Check if the service can reach its database",
        response_model=ReadinessResponse,
    )
    async def readiness_check():
        """Readiness: the database answers a trivial query."""
        try:
            async with app.state.database.session() as session:
                await session.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Readiness check failed")
            body = ReadinessResponse(
                status=HealthStatus.NOT_READY,
                service=SERVICE_NAME,
                checks={"database": "error"},
            )
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))

        return ReadinessResponse(status=HealthStatus.READY, service=SERVICE_NAME, checks={"database": "ok"})

    @app.get(
        "/info",
        status_code=status.HTTP_200_OK,
        tags=["Info"],
        summary="Service Information",
        description="Get detailed information about the service",
        response_model=dict,
    )
    async def service_info():
        """Service information endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": "Travel agency CRM booking and payment core",
            "environment": settings.environment,
            "debug": settings.debug,
            "features": {
                "authentication": True,
                "payments": "midtrans",
                "payment_sandbox": not settings.midtrans_is_production,
                "tracing": settings.otlp_endpoint is not None,
                "problem_details": True,
            },
            "endpoints": {
                "health": "/health",
                "readiness": "/ready",
                "info": "/info",
                "metrics": "/metrics",
                "docs": "/docs" if settings.debug else None,
                "redoc": "/redoc" if settings.debug else None,
            },
        }

    # Register API routers
    app.include_router(packages.router)
    app.include_router(bookings.router)
    app.include_router(payments.router)
    app.include_router(metrics.router)

    logger.debug("Booking API application created")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "travel_crm.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
