"""Device registry: the process-wide catalog of devices and their connectors.

The registry is built once from the device inventory. Each descriptor gets
exactly one connector, created eagerly so that an unknown family tag fails
at startup instead of at first use. After construction the catalog is
read-only; connectors own their own connection state.
"""

import asyncio
import logging
from typing import Any

from opentelemetry import trace

from fleetlink.config import Settings, get_settings, load_devices
from fleetlink.connectors import BaseConnector, create_connector
from fleetlink.domain.exceptions import DeviceNotFoundError
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    StatusEnvelope,
)
from fleetlink.infra.observability.metrics import record_status_check
from fleetlink.infra.observability.tracing import set_span_error, trace_device_operation

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Catalog of configured devices with failure-isolated fleet operations.

    Example:
        registry = DeviceRegistry(load_devices("devices.json"))
        statuses = await registry.get_all_statuses(family="cisco")
    """

    def __init__(
        self,
        descriptors: list[DeviceDescriptor],
        settings: Settings | None = None,
    ) -> None:
        """Build one connector per descriptor.

        Args:
            descriptors: Device descriptors in inventory order
            settings: Application settings (default: global settings)

        Raises:
            ValueError: On duplicate device ids
            UnknownDeviceFamilyError: On a family tag without a connector
        """
        self.settings = settings or get_settings()
        self._descriptors: dict[str, DeviceDescriptor] = {}
        self._connectors: dict[str, BaseConnector] = {}

        for descriptor in descriptors:
            if descriptor.id in self._descriptors:
                raise ValueError(f"Duplicate device id: {descriptor.id}")
            self._connectors[descriptor.id] = create_connector(descriptor, self.settings)
            self._descriptors[descriptor.id] = descriptor

        logger.info(
            f"Device registry initialized with {len(self._descriptors)} device(s)",
            extra={"device_count": len(self._descriptors)},
        )

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._descriptors

    @property
    def device_ids(self) -> list[str]:
        return list(self._descriptors)

    def get_connector(self, device_id: str) -> BaseConnector:
        """Connector for a device id.

        Raises:
            DeviceNotFoundError: Listing every known id
        """
        connector = self._connectors.get(device_id)
        if connector is None:
            known = ", ".join(self._descriptors) or "(none)"
            raise DeviceNotFoundError(
                f"Device not found: {device_id}. Available devices: {known}",
                context={"device_id": device_id, "available": list(self._descriptors)},
            )
        return connector

    def get_descriptor(self, device_id: str) -> DeviceDescriptor:
        return self.get_connector(device_id).descriptor

    def list_devices(
        self,
        filter: str | None = None,
        family: str | None = None,
        tag: str | None = None,
    ) -> list[DeviceDescriptor]:
        """Descriptors matching every given filter, in inventory order.

        Args:
            filter: Case-insensitive substring over id, name, family and tags
            family: Exact family tag
            tag: Exact tag
        """
        needle = filter.lower() if filter else None
        family = family.lower() if family else None
        result = []
        for descriptor in self._descriptors.values():
            if family and descriptor.family != family:
                continue
            if tag and tag not in descriptor.tags:
                continue
            if needle and not _matches(descriptor, needle):
                continue
            result.append(descriptor)
        return result

    async def get_status(self, device_id: str) -> StatusEnvelope:
        """Status of one device. Raises only DeviceNotFoundError."""
        return await self._status(self.get_connector(device_id))

    async def get_all_statuses(
        self,
        family: str | None = None,
        tag: str | None = None,
        concurrency: int | None = None,
    ) -> list[StatusEnvelope]:
        """Status of every matching device, in inventory order.

        Errored devices are included as error-state envelopes; one device
        never aborts the batch.

        Args:
            family: Only devices of this family
            tag: Only devices with this tag
            concurrency: Worker count (default: settings.status_concurrency;
                1 polls devices one after another)
        """
        connectors = [
            self._connectors[d.id] for d in self.list_devices(family=family, tag=tag)
        ]
        workers = concurrency or self.settings.status_concurrency

        if workers <= 1:
            return [await self._status(connector) for connector in connectors]

        semaphore = asyncio.Semaphore(workers)

        async def bounded(connector: BaseConnector) -> StatusEnvelope:
            async with semaphore:
                return await self._status(connector)

        return list(await asyncio.gather(*(bounded(c) for c in connectors)))

    async def _status(self, connector: BaseConnector) -> StatusEnvelope:
        span = trace_device_operation(connector.device_id, connector.device_family, "get_status")
        with trace.use_span(span, end_on_exit=True):
            try:
                status = await connector.get_status()
            except Exception as e:  # noqa: BLE001
                # get_status() must not raise; guard against a connector that does
                logger.error(
                    f"Connector raised from get_status: {connector.device_id}: {e}",
                    extra={"device_id": connector.device_id},
                    exc_info=True,
                )
                status = connector.build_status(
                    state=ConnectionState.ERROR,
                    details={"error": str(e) or type(e).__name__},
                )

            if status.state is ConnectionState.ERROR:
                set_span_error(span, status.error or "status error")
            span.set_attribute("device.state", status.state.value)

        record_status_check(status.family, status.state.value)
        return status

    async def test_connection(self, device_id: str) -> bool:
        return await self.get_connector(device_id).test_connection()

    async def execute_command(self, device_id: str, command: str) -> CommandResult:
        connector = self.get_connector(device_id)
        span = trace_device_operation(device_id, connector.device_family, "execute_command")
        with trace.use_span(span, end_on_exit=True):
            result = await connector.execute_command(command)
            if not result.success:
                set_span_error(span, result.error or "command failed")
            return result

    async def get_config(self, device_id: str, section: str | None = None) -> str:
        connector = self.get_connector(device_id)
        span = trace_device_operation(device_id, connector.device_family, "get_config")
        with trace.use_span(span, end_on_exit=True):
            return await connector.get_config(section)

    async def list_children(self, device_id: str) -> list[dict[str, Any]]:
        connector = self.get_connector(device_id)
        span = trace_device_operation(device_id, connector.device_family, "list_children")
        with trace.use_span(span, end_on_exit=True):
            return await connector.list_children()

    async def close(self) -> None:
        """Disconnect every connector. Errors are logged, not raised."""
        for connector in self._connectors.values():
            try:
                await connector.disconnect()
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    f"Error disconnecting {connector.device_id}: {e}",
                    extra={"device_id": connector.device_id},
                )


def _matches(descriptor: DeviceDescriptor, needle: str) -> bool:
    haystack = [descriptor.id, descriptor.name, descriptor.family, *descriptor.tags]
    return any(needle in value.lower() for value in haystack)


# ========================================
# Global Registry Instance
# ========================================

_registry: DeviceRegistry | None = None


def initialize_registry(settings: Settings | None = None) -> DeviceRegistry:
    """Load the device inventory and install the global registry.

    Args:
        settings: Application settings (default: global settings)

    Returns:
        The new registry
    """
    global _registry
    settings = settings or get_settings()
    _registry = DeviceRegistry(load_devices(settings.devices_file), settings)
    return _registry


def get_registry() -> DeviceRegistry:
    """Get the global registry.

    Raises:
        RuntimeError: If initialize_registry()/set_registry() was not called
    """
    if _registry is None:
        raise RuntimeError("Device registry not initialized. Call initialize_registry() first.")
    return _registry


def set_registry(registry: DeviceRegistry) -> None:
    global _registry
    _registry = registry


def reset_registry() -> None:
    """Drop the global registry (tests)."""
    global _registry
    _registry = None
