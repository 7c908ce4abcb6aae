"""Prometheus metrics for observability.

Provides metrics collection for device transport requests,
re-authentication and fleet status checks.
"""

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global registry for metrics
_registry = CollectorRegistry()


# Transport Metrics
device_requests_total = Counter(
    "fleetlink_device_requests_total",
    "Total number of device transport requests",
    ["device_id", "transport", "operation", "status"],
    registry=_registry,
)

device_request_duration_seconds = Histogram(
    "fleetlink_device_request_duration_seconds",
    "Duration of device transport requests in seconds",
    ["device_id", "transport", "operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=_registry,
)

reauthentications_total = Counter(
    "fleetlink_reauthentications_total",
    "Total number of session re-authentications after expiry",
    ["device_id", "family"],
    registry=_registry,
)

# Registry Metrics
status_checks_total = Counter(
    "fleetlink_status_checks_total",
    "Total number of device status checks",
    ["family", "state"],
    registry=_registry,
)


def get_registry() -> CollectorRegistry:
    """Get the metrics registry.

    Returns:
        Prometheus collector registry
    """
    return _registry


def get_metrics_text() -> str:
    """Get metrics in Prometheus text format.

    Returns:
        Metrics text
    """
    return generate_latest(_registry).decode("utf-8")


def record_device_request(
    device_id: str,
    transport: str,
    operation: str,
    success: bool,
    duration: float,
) -> None:
    """Record a device transport request.

    Args:
        device_id: Device identifier
        transport: Transport kind (ssh/rest/serial)
        operation: Operation name (exec, shell, GET, at, frame, ...)
        success: Whether the request succeeded
        duration: Request duration in seconds
    """
    status = "success" if success else "error"
    device_requests_total.labels(
        device_id=device_id, transport=transport, operation=operation, status=status
    ).inc()
    device_request_duration_seconds.labels(
        device_id=device_id, transport=transport, operation=operation
    ).observe(duration)


def record_reauthentication(device_id: str, family: str) -> None:
    """Record a re-authentication triggered by session expiry."""
    reauthentications_total.labels(device_id=device_id, family=family).inc()


def record_status_check(family: str, state: str) -> None:
    """Record a status check outcome."""
    status_checks_total.labels(family=family, state=state).inc()


__all__ = [
    "get_registry",
    "get_metrics_text",
    "record_device_request",
    "record_reauthentication",
    "record_status_check",
]
