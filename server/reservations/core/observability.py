"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry
import structlog

from .config import settings

SERVICE_NAME = "festival-reservations"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Reservation lifecycle metrics
RESERVATION_TRANSITIONS = Counter(
    'reservation_transitions_total',
    'Reservation state transitions',
    ['kind', 'status'],
    registry=REGISTRY
)

# Ledger metrics
LEDGER_CONFLICTS = Counter(
    'ledger_conflicts_total',
    'Compare-and-swap writes rejected for a stale version',
    registry=REGISTRY
)

LEDGER_RETRIES_EXHAUSTED = Counter(
    'ledger_retries_exhausted_total',
    'Operations that gave up after the conflict retry budget',
    ['operation'],
    registry=REGISTRY
)

HOLDS_RELEASED = Counter(
    'reconciliation_holds_released_total',
    'Inventory holds released by the reconciliation sweep',
    ['reason'],
    registry=REGISTRY
)

# Payment gateway metrics
GATEWAY_CALL_DURATION = Histogram(
    'payment_gateway_call_duration_seconds',
    'Payment gateway call latency in seconds',
    ['operation', 'outcome'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    logging.basicConfig(level=getattr(logging, settings.log_level))

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _service_resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    trace.set_tracer_provider(TracerProvider(resource=_service_resource()))

    # Setup OTLP exporter (if OTLP endpoint is configured)
    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        span_processor = BatchSpanProcessor(otlp_exporter)
        trace.get_tracer_provider().add_span_processor(span_processor)

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_service_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_transition(kind: str, status: str):
        """Record a reservation reaching a status."""
        RESERVATION_TRANSITIONS.labels(kind=kind, status=status).inc()

    @staticmethod
    def record_ledger_conflict():
        LEDGER_CONFLICTS.inc()

    @staticmethod
    def record_retries_exhausted(operation: str):
        LEDGER_RETRIES_EXHAUSTED.labels(operation=operation).inc()

    @staticmethod
    def record_hold_released(reason: str):
        """Record a hold released by the reconciliation sweep."""
        HOLDS_RELEASED.labels(reason=reason).inc()

    @staticmethod
    @contextmanager
    def time_gateway_call(operation: str) -> Iterator[None]:
        """Time a payment gateway call, labelling it by outcome."""
        start = time.perf_counter()
        outcome = "error"
        try:
            yield
            outcome = "ok"
        finally:
            GATEWAY_CALL_DURATION.labels(operation=operation, outcome=outcome).observe(
                time.perf_counter() - start
            )


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


def get_logger(name: str):
    """Get a structlog logger bound to a component name."""
    return structlog.get_logger(name).bind(component=name)
