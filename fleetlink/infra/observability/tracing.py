"""OpenTelemetry distributed tracing for observability.

Provides spans around device operations with correlation ID propagation.
Until setup_tracing() is called the global no-op tracer is used, so
instrumented code runs unchanged without a configured provider.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from fleetlink.infra.observability.logging import get_correlation_id

logger = logging.getLogger(__name__)

# Global tracer provider
_tracer_provider: TracerProvider | None = None
_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = "fleetlink",
    console_export: bool = False,
) -> None:
    """Configure OpenTelemetry tracing.

    Args:
        service_name: Service name for traces
        console_export: Whether to export traces to console (for debugging)
    """
    global _tracer_provider, _tracer

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": "0.1.0",
        }
    )

    _tracer_provider = TracerProvider(resource=resource)

    if console_export:
        console_exporter = ConsoleSpanExporter()
        _tracer_provider.add_span_processor(BatchSpanProcessor(console_exporter))

    trace.set_tracer_provider(_tracer_provider)
    _tracer = trace.get_tracer(__name__)

    logger.info(
        "Tracing configured",
        extra={"service_name": service_name, "console_export": console_export},
    )


def get_tracer() -> trace.Tracer:
    """Get the configured tracer, or the global (no-op by default) one."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> trace.Span:
    """Create a new trace span with correlation ID.

    Args:
        name: Span name
        attributes: Span attributes
        kind: Span kind (INTERNAL/CLIENT/SERVER/etc)

    Returns:
        Trace span
    """
    attrs = dict(attributes or {})
    attrs["correlation_id"] = get_correlation_id()
    return get_tracer().start_span(name, attributes=attrs, kind=kind)


def trace_device_operation(device_id: str, family: str, operation: str) -> trace.Span:
    """Create a span for a connector operation.

    Args:
        device_id: Device identifier
        family: Device family tag
        operation: Operation name (status, execute_command, ...)

    Returns:
        Trace span
    """
    return create_span(
        f"device.{operation}",
        attributes={
            "device.id": device_id,
            "device.family": family,
            "device.operation": operation,
        },
        kind=trace.SpanKind.CLIENT,
    )


def set_span_error(span: trace.Span, error: BaseException | str) -> None:
    """Mark span as error and record exception.

    Args:
        span: Span to mark as error
        error: Exception (or message) that occurred
    """
    span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
    if isinstance(error, BaseException):
        span.record_exception(error)


__all__ = [
    "setup_tracing",
    "get_tracer",
    "create_span",
    "trace_device_operation",
    "set_span_error",
]
