"""Device connectors and the family-tag factory.

Every family adapter plugs into one of three transport bases:
ShellConnector (SSH), RestConnector (HTTP with credential lifecycle) or
FramedConnector (AT / raw byte framing over TCP).
"""

from fleetlink.config import Settings
from fleetlink.connectors.base import BaseConnector
from fleetlink.connectors.cisco import CiscoConnector
from fleetlink.connectors.dahua import DahuaNvrConnector
from fleetlink.connectors.dahua_dss import DahuaDssConnector
from fleetlink.connectors.espconnect import ESPConnectConnector
from fleetlink.connectors.esphome import ESPHomeConnector
from fleetlink.connectors.esxi import ESXiConnector
from fleetlink.connectors.fortigate import FortigateConnector
from fleetlink.connectors.framed import FramedConnector
from fleetlink.connectors.hiflying import HiFlyingConnector
from fleetlink.connectors.hp import HPConnector
from fleetlink.connectors.mikrotik import MikrotikConnector
from fleetlink.connectors.openstack import OpenStackConnector
from fleetlink.connectors.proxmox import ProxmoxConnector
from fleetlink.connectors.qnap import QnapConnector
from fleetlink.connectors.rest import RestConnector, ShellFallbackConnector
from fleetlink.connectors.shell import ShellConnector
from fleetlink.connectors.sonoff import SonoffConnector
from fleetlink.connectors.synology import SynologyConnector
from fleetlink.connectors.thingsboard import ThingsBoardConnector
from fleetlink.connectors.tuya import TuyaConnector
from fleetlink.domain.exceptions import UnknownDeviceFamilyError
from fleetlink.domain.models import DeviceDescriptor

CONNECTOR_TYPES: dict[str, type[BaseConnector]] = {
    cls.family: cls
    for cls in (
        CiscoConnector,
        HPConnector,
        MikrotikConnector,
        FortigateConnector,
        ProxmoxConnector,
        QnapConnector,
        SynologyConnector,
        ThingsBoardConnector,
        TuyaConnector,
        SonoffConnector,
        ESPHomeConnector,
        ESPConnectConnector,
        ESXiConnector,
        DahuaNvrConnector,
        DahuaDssConnector,
        OpenStackConnector,
        HiFlyingConnector,
    )
}


def supported_families() -> list[str]:
    return sorted(CONNECTOR_TYPES)


def create_connector(
    descriptor: DeviceDescriptor, settings: Settings | None = None
) -> BaseConnector:
    """Instantiate the connector for a descriptor's family tag.

    Args:
        descriptor: Device descriptor
        settings: Transport settings (defaults to the global settings)

    Returns:
        A disconnected connector instance

    Raises:
        UnknownDeviceFamilyError: If no connector handles the family tag
    """
    connector_cls = CONNECTOR_TYPES.get(descriptor.family)
    if connector_cls is None:
        raise UnknownDeviceFamilyError(
            f"Unknown device family: {descriptor.family} "
            f"(device {descriptor.id}; supported: {', '.join(supported_families())})",
            context={"device_id": descriptor.id, "family": descriptor.family},
        )
    return connector_cls(descriptor, settings)


__all__ = [
    "CONNECTOR_TYPES",
    "BaseConnector",
    "FramedConnector",
    "RestConnector",
    "ShellConnector",
    "ShellFallbackConnector",
    "create_connector",
    "supported_families",
]
