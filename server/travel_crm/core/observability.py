"""Observability setup: structured logging, Prometheus metrics, OpenTelemetry."""

import logging
import sys

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import settings

SERVICE_NAME = "travel-crm-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

BOOKINGS_CREATED = Counter(
    "bookings_created_total",
    "Total bookings created",
    registry=REGISTRY
)

BOOKINGS_CANCELED = Counter(
    "bookings_canceled_total",
    "Total bookings canceled",
    ["source"],
    registry=REGISTRY
)

CAPACITY_REJECTIONS = Counter(
    "booking_capacity_rejections_total",
    "Booking requests rejected for lack of package slots",
    registry=REGISTRY
)

PAYMENTS_INITIATED = Counter(
    "payments_initiated_total",
    "Hosted checkout transactions created",
    ["outcome"],
    registry=REGISTRY
)

PAYMENT_NOTIFICATIONS = Counter(
    "payment_notifications_total",
    "Payment provider notifications processed",
    ["transaction_status", "outcome"],
    registry=REGISTRY
)

CUSTOMER_STATUS_CHANGES = Counter(
    "customer_status_changes_total",
    "Customer tier changes",
    ["status"],
    registry=REGISTRY
)

PACKAGE_AVAILABLE_SLOTS = Gauge(
    "package_available_slots",
    "Available slots per package at the last availability check",
    ["package_id"],
    registry=REGISTRY
)


def setup_structured_logging() -> None:
    """
    Route standard-library and structlog records through one structlog pipeline.

    Modules log with ``logging.getLogger(__name__)`` and ``extra={...}``;
    the extra fields end up as keys of the rendered event.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.is_production:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.log_level))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def setup_tracing(app_name: str = SERVICE_NAME) -> trace.Tracer:
    """Configure the OpenTelemetry tracer provider and optional OTLP export."""
    resource = Resource.create({
        "service.name": app_name,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })

    provider = TracerProvider(resource=resource)
    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))
    trace.set_tracer_provider(provider)

    return trace.get_tracer(__name__)


def instrument_fastapi(app) -> None:
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Instrument the application's engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_booking_created() -> None:
        BOOKINGS_CREATED.inc()

    @staticmethod
    def record_booking_canceled(source: str) -> None:
        BOOKINGS_CANCELED.labels(source=source).inc()

    @staticmethod
    def record_capacity_rejection() -> None:
        CAPACITY_REJECTIONS.inc()

    @staticmethod
    def record_payment_initiated(outcome: str) -> None:
        PAYMENTS_INITIATED.labels(outcome=outcome).inc()

    @staticmethod
    def record_notification(transaction_status: str, outcome: str) -> None:
        PAYMENT_NOTIFICATIONS.labels(transaction_status=transaction_status, outcome=outcome).inc()

    @staticmethod
    def record_customer_status_change(status: str) -> None:
        CUSTOMER_STATUS_CHANGES.labels(status=status).inc()

    @staticmethod
    def set_available_slots(package_id: str, slots: int) -> None:
        PACKAGE_AVAILABLE_SLOTS.labels(package_id=package_id).set(slots)


def get_prometheus_metrics() -> bytes:
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
