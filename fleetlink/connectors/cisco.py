"""Cisco IOS / IOS-XE switches over SSH exec channels."""

import re

from fleetlink.connectors.shell import ShellConnector
from fleetlink.domain.models import ConnectionState, StatusEnvelope

_UPTIME = re.compile(r"uptime is (.+)", re.IGNORECASE)
_VERSION = re.compile(r"Version ([^\s,]+)", re.IGNORECASE)
_MODEL = re.compile(r"(?:cisco|Model number)\s*:\s*(.+)", re.IGNORECASE)
_MODEL_LINE = re.compile(r"^cisco\s+(\S+)\s.*processor", re.IGNORECASE | re.MULTILINE)
_SERIAL = re.compile(r"(?:System serial number|Processor board ID)\s*:?\s*(\S+)", re.IGNORECASE)


def parse_show_version(output: str) -> dict[str, str]:
    """Extract uptime, firmware, model and serial from `show version`."""

    def first(*patterns: re.Pattern[str]) -> str:
        for pattern in patterns:
            match = pattern.search(output)
            if match:
                return match.group(1).strip()
        return "unknown"

    return {
        "uptime": first(_UPTIME),
        "firmware": first(_VERSION),
        "model": first(_MODEL, _MODEL_LINE),
        "serial_number": first(_SERIAL),
    }


class CiscoConnector(ShellConnector):
    family = "cisco"

    async def _collect_status(self) -> StatusEnvelope:
        output = await self.exec("show version")
        return self.build_status(state=ConnectionState.CONNECTED, **parse_show_version(output))

    async def get_config(self, section: str | None = None) -> str:
        command = (
            f"show running-config | section {section}" if section else "show running-config"
        )
        return await self.exec(command)

    async def get_interfaces(self) -> str:
        return await self.exec("show ip interface brief")

    async def get_vlans(self) -> str:
        return await self.exec("show vlan brief")

    async def get_mac_table(self, vlan: int | None = None) -> str:
        command = f"show mac address-table vlan {vlan}" if vlan else "show mac address-table"
        return await self.exec(command)

    async def get_neighbors(self) -> str:
        return await self.exec("show cdp neighbors detail")

    async def get_logs(self, lines: int | None = None) -> str:
        return await self.exec(f"show logging | tail {lines}" if lines else "show logging")
