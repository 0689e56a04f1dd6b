"""Telemetry utilities for logging, metrics, and tracing.

This module provides centralized observability infrastructure including:
- Structured logging with credential and PII redaction
- Prometheus metrics collection
- OpenTelemetry tracing setup
- Performance measurement utilities
"""

import logging
import re
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from structlog.processors import JSONRenderer

# Prometheus metrics
PLACEMENTS_TOTAL = Counter(
    "gridplace_placements_total",
    "Total number of placement requests by outcome",
    ["outcome"],
)

OPERATION_LATENCY = Histogram(
    "gridplace_operation_duration_seconds",
    "Operation latency in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0],
)

OPERATION_COUNTER = Counter(
    "gridplace_operations_total",
    "Total number of timed operations",
    ["operation", "status"],
)

LIVE_VIEWERS = Gauge(
    "gridplace_live_viewers",
    "Number of currently subscribed observers",
)

BROADCAST_DROPS = Counter(
    "gridplace_broadcast_drops_total",
    "Subscribers removed by the broadcaster",
    ["reason"],
)

CACHE_LOADS = Counter(
    "gridplace_cache_loads_total",
    "Number of bulk loads performed by the grid cache",
)

# Redaction patterns
REDACTION_PATTERNS = {
    "credential": re.compile(r"\b[A-Fa-f0-9]{64}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
}


def redact_secrets(text: Any) -> Any:
    """Redact credentials and personally identifiable information from text.

    Args:
        text: Input text that may contain secrets

    Returns:
        Text with secret patterns replaced with [REDACTED_<type>], or the
        original input if not a string

    Example:
        >>> redact_secrets("contact ops@example.com")
        'contact [REDACTED_EMAIL]'
    """
    if not isinstance(text, str):
        return text

    result = text
    for kind, pattern in REDACTION_PATTERNS.items():
        result = pattern.sub(f"[REDACTED_{kind.upper()}]", result)
    return result


def redaction_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor to redact secrets from log events.

    Args:
        logger: Logger instance (unused)
        method_name: Log method name (unused)
        event_dict: Event dictionary to process

    Returns:
        Event dictionary with secrets redacted from string values
    """

    def redact_value(value: Any) -> Any:
        if isinstance(value, str):
            return redact_secrets(value)
        elif isinstance(value, dict):
            return {k: redact_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(item) for item in value]
        return value

    return {key: redact_value(value) for key, value in event_dict.items()}


def setup_logging(log_level: str = "INFO", enable_redaction: bool = True) -> None:
    """Initialize structured logging with secret redaction.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_redaction: Whether to enable the redaction processor
    """
    logging.basicConfig(format="%(message)s", level=log_level.upper())

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if enable_redaction:
        processors.append(redaction_processor)

    processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_tracing(
    service_name: str = "gridplace",
    otlp_endpoint: str | None = None,
    app: Any | None = None,
) -> None:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP endpoint URL (if None, uses console exporter)
        app: FastAPI application to instrument, if any
    """
    from gridplace import __version__

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    exporter: OTLPSpanExporter | ConsoleSpanExporter
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)


def get_tracer(name: str) -> trace.Tracer:
    """Get OpenTelemetry tracer for a component.

    Args:
        name: Tracer name (typically module name)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)


def get_logger(name: str, **context: Any) -> Any:
    """Get a structured logger with optional context.

    Args:
        name: Logger name
        **context: Additional context to bind to logger

    Returns:
        Bound logger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def log_operation(
    logger: Any,
    operation: str,
    status: str = "success",
    agent_id: str | None = None,
    latency_ms: float | None = None,
    **extra_context: Any,
) -> None:
    """Log an operation with standardized fields for observability.

    Args:
        logger: Structured logger instance
        operation: Operation name
        status: Operation status (success, error)
        agent_id: Agent identifier
        latency_ms: Operation latency in milliseconds
        **extra_context: Additional context fields
    """
    log_data = {
        "operation": operation,
        "status": status,
        **extra_context,
    }

    if agent_id is not None:
        log_data["agent_id"] = agent_id
    if latency_ms is not None:
        log_data["latency_ms"] = latency_ms

    if status == "error":
        logger.error("Operation completed", **log_data)
    else:
        logger.debug("Operation completed", **log_data)


class PerformanceTimer:
    """Holds timing state for a measured operation."""

    def __init__(
        self,
        operation: str,
        agent_id: str | None = None,
        logger: Any = None,
        record_metrics: bool = True,
        create_span: bool = True,
        tracer_name: str = "gridplace.performance",
    ):
        self.operation = operation
        self.agent_id = agent_id
        self.logger = logger or get_logger("gridplace.performance")
        self.record_metrics = record_metrics
        self.tracer = get_tracer(tracer_name) if create_span else None
        self.span: trace.Span | None = None
        self.start_time: float | None = None
        self.end_time: float | None = None

    @property
    def duration(self) -> float | None:
        """Get operation duration in seconds."""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return None

    def _finish(self, status: str, error: BaseException | None = None) -> None:
        self.end_time = time.perf_counter()
        duration = self.end_time - (self.start_time or self.end_time)

        if self.record_metrics:
            OPERATION_COUNTER.labels(operation=self.operation, status=status).inc()
            OPERATION_LATENCY.labels(operation=self.operation).observe(duration)

        if self.span:
            self.span.set_attribute("duration_seconds", duration)
            self.span.set_attribute("status", status)
            if error is not None:
                self.span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
                self.span.record_exception(error)
            else:
                self.span.set_status(trace.Status(trace.StatusCode.OK))
            self.span.end()

        extra = {"error": str(error)} if error is not None else {}
        log_operation(
            self.logger,
            self.operation,
            status=status,
            agent_id=self.agent_id,
            latency_ms=duration * 1000,
            **extra,
        )


@asynccontextmanager
async def async_performance_timer(
    operation: str,
    agent_id: str | None = None,
    logger: Any = None,
    record_metrics: bool = True,
    create_span: bool = True,
    tracer_name: str = "gridplace.performance",
) -> AsyncGenerator[PerformanceTimer, None]:
    """Async context manager for measuring operation performance.

    Args:
        operation: Operation name for metrics/logging
        agent_id: Agent identifier (optional)
        logger: Logger instance (optional)
        record_metrics: Whether to record Prometheus metrics
        create_span: Whether to create tracing span
        tracer_name: Tracer name for spans

    Yields:
        PerformanceTimer instance
    """
    timer = PerformanceTimer(
        operation=operation,
        agent_id=agent_id,
        logger=logger,
        record_metrics=record_metrics,
        create_span=create_span,
        tracer_name=tracer_name,
    )

    timer.start_time = time.perf_counter()

    if timer.tracer:
        timer.span = timer.tracer.start_span(operation)
        if agent_id:
            timer.span.set_attribute("agent_id", agent_id)

    try:
        yield timer
    except Exception as e:
        timer._finish("error", e)
        raise
    else:
        timer._finish("success")


def record_placement(outcome: str) -> None:
    """Record a placement outcome.

    Args:
        outcome: ``accepted`` or the rejection code
    """
    PLACEMENTS_TOTAL.labels(outcome=outcome).inc()


def record_broadcast_drop(reason: str) -> None:
    """Record a subscriber removed by the broadcaster.

    Args:
        reason: Removal reason (queue_full, expired, closed)
    """
    BROADCAST_DROPS.labels(reason=reason).inc()


def update_live_viewers(count: int) -> None:
    """Update the live viewer gauge.

    Args:
        count: Number of currently subscribed observers
    """
    LIVE_VIEWERS.set(count)


def record_cache_load() -> None:
    """Record a grid cache bulk load."""
    CACHE_LOADS.inc()


def start_metrics_server(port: int = 9100) -> None:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to serve metrics on
    """
    start_http_server(port)


def now_ms() -> int:
    """Wall clock time in integer milliseconds."""
    return int(time.time() * 1000)
