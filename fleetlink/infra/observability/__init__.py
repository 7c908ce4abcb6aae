"""Observability infrastructure for fleetlink.

Provides structured logging, metrics, and tracing for device connectors.
"""

from fleetlink.infra.observability.logging import (
    CorrelationIDFilter,
    JSONFormatter,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)
from fleetlink.infra.observability.metrics import (
    get_metrics_text,
    get_registry,
    record_device_request,
    record_reauthentication,
    record_status_check,
)
from fleetlink.infra.observability.tracing import (
    create_span,
    get_tracer,
    set_span_error,
    setup_tracing,
    trace_device_operation,
)

__all__ = [
    # Logging
    "correlation_id_var",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "setup_logging",
    # Metrics
    "get_registry",
    "get_metrics_text",
    "record_device_request",
    "record_reauthentication",
    "record_status_check",
    # Tracing
    "setup_tracing",
    "get_tracer",
    "create_span",
    "trace_device_operation",
    "set_span_error",
]
