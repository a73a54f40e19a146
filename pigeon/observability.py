"""
Observability and monitoring setup for the Pigeon SMS wallet service.
"""

import asyncio
from typing import Optional, Dict, Any, Callable
from functools import wraps

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
request_counter: Optional[metrics.Counter] = None
request_duration: Optional[metrics.Histogram] = None
error_counter: Optional[metrics.Counter] = None
sms_message_counter: Optional[metrics.Counter] = None
webhook_event_counter: Optional[metrics.Counter] = None
wallet_operation_counter: Optional[metrics.Counter] = None
wallet_operation_duration: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "pigeon-sms-wallet",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global request_counter, request_duration, error_counter
    global sms_message_counter, webhook_event_counter
    global wallet_operation_counter, wallet_operation_duration

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    # Set up tracing
    trace_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        otlp_span_exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        trace_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))

    if enable_console_export:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    # Set up metrics
    metric_readers = []

    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000  # 30 seconds
            )
        )

    if enable_console_export:
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000  # 60 seconds
            )
        )

    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter(__name__)

    # Create metric instruments
    request_counter = meter.create_counter(
        name="http_requests_total",
        description="Total number of HTTP requests",
        unit="1"
    )

    request_duration = meter.create_histogram(
        name="http_request_duration_seconds",
        description="HTTP request duration in seconds",
        unit="s"
    )

    error_counter = meter.create_counter(
        name="http_errors_total",
        description="Total number of HTTP errors",
        unit="1"
    )

    sms_message_counter = meter.create_counter(
        name="sms_messages_total",
        description="Inbound SMS messages by resolved intent",
        unit="1"
    )

    webhook_event_counter = meter.create_counter(
        name="sms_webhook_events_total",
        description="Inbound webhook events by outcome",
        unit="1"
    )

    wallet_operation_counter = meter.create_counter(
        name="wallet_operations_total",
        description="Wallet operations by chain, operation and outcome",
        unit="1"
    )

    wallet_operation_duration = meter.create_histogram(
        name="wallet_operation_duration_seconds",
        description="Wallet operation duration in seconds",
        unit="s"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: FastAPI application instance
    """
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    try:
        FastAPIInstrumentor.instrument_app(app)
    except RuntimeError as e:
        # Older instrumentors add middleware, which Starlette refuses once serving
        logger.warning("FastAPI instrumentation skipped", error=str(e))
    HTTPXClientInstrumentor().instrument()
    LoggingInstrumentor().instrument(set_logging_format=True)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            span_name = operation_name or f"{func.__module__}.{func.__name__}"

            with tracer.start_as_current_span(span_name) as span:
                try:
                    span.set_attribute("function.name", func.__name__)
                    span.set_attribute("function.module", func.__module__)

                    result = await func(*args, **kwargs)

                    span.set_attribute("success", True)
                    return result

                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    span.set_attribute("error.message", str(e))
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            span_name = operation_name or f"{func.__module__}.{func.__name__}"

            with tracer.start_as_current_span(span_name) as span:
                try:
                    span.set_attribute("function.name", func.__name__)
                    span.set_attribute("function.module", func.__module__)

                    result = func(*args, **kwargs)

                    span.set_attribute("success", True)
                    return result

                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    span.set_attribute("error.message", str(e))
                    raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_wallet_operation(
    chain: str,
    operation: str,
    outcome: str,
    processing_time: float
) -> None:
    """
    Record metrics for one wallet operation.

    Args:
        chain: Chain name (algorand, solana)
        operation: Operation name (send, fund, ...)
        outcome: "success" or the error kind
        processing_time: Time taken in seconds
    """
    if wallet_operation_counter is None or wallet_operation_duration is None:
        return

    attributes = {
        "chain": chain,
        "operation": operation,
        "outcome": outcome
    }

    wallet_operation_counter.add(1, attributes)
    wallet_operation_duration.record(processing_time, attributes)


def record_sms_message(intent: str, source: str) -> None:
    """Count an inbound message by the intent it resolved to."""
    if sms_message_counter is None:
        return
    sms_message_counter.add(1, {"intent": intent, "source": source})


def record_webhook_event(source: str, outcome: str) -> None:
    """Count a webhook delivery by outcome (processed, duplicate, acknowledged, rejected)."""
    if webhook_event_counter is None:
        return
    webhook_event_counter.add(1, {"source": source, "outcome": outcome})


def record_http_metrics(
    method: str,
    path: str,
    status_code: int,
    processing_time: float
) -> None:
    """
    Record HTTP request metrics.

    Args:
        method: HTTP method
        path: Request path
        status_code: HTTP status code
        processing_time: Request processing time in seconds
    """
    if request_counter is None or request_duration is None or error_counter is None:
        return

    attributes = {
        "method": method,
        "path": path,
        "status_code": str(status_code)
    }

    request_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)

    if status_code >= 400:
        error_attributes = {
            "method": method,
            "path": path,
            "status_code": str(status_code),
            "error_type": "client_error" if status_code < 500 else "server_error"
        }
        error_counter.add(1, error_attributes)


def get_trace_context() -> Dict[str, Any]:
    """
    Get current trace context information.

    Returns:
        Dict with trace ID and span ID if available
    """
    current_span = trace.get_current_span()
    if current_span is None or not current_span.is_recording():
        return {}

    span_context = current_span.get_span_context()
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
        "trace_flags": int(span_context.trace_flags)
    }


class TracingContextMiddleware:
    """
    Middleware to add tracing context to structured logs.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        trace_context = get_trace_context()
        if trace_context:
            structlog.contextvars.bind_contextvars(**trace_context)

        await self.app(scope, receive, send)
