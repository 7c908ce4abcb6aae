"""HP / Aruba ProCurve switches.

The ProCurve CLI has no usable exec channel, so commands run in an
interactive shell with paging disabled by `no page`.
"""

import re

from fleetlink.connectors.shell import ShellConnector
from fleetlink.domain.models import ConnectionState, StatusEnvelope

_FIELDS = {
    "uptime": (re.compile(r"Up Time\s*:\s*(.+)", re.IGNORECASE),),
    "firmware": (
        re.compile(r"Firmware revision\s*:\s*(\S+)", re.IGNORECASE),
        re.compile(r"Software revision\s*:\s*(\S+)", re.IGNORECASE),
    ),
    "model": (re.compile(r"System Description\s*:\s*(.+)", re.IGNORECASE),),
    "serial_number": (re.compile(r"Serial Number\s*:\s*(\S+)", re.IGNORECASE),),
}


def parse_show_system(output: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for field, patterns in _FIELDS.items():
        parsed[field] = "unknown"
        for pattern in patterns:
            match = pattern.search(output)
            if match:
                # Two-column layout: stop at the next label on the same line
                parsed[field] = re.split(r"\s{2,}", match.group(1).strip())[0]
                break
    return parsed


class HPConnector(ShellConnector):
    family = "hp"
    use_interactive_shell = True
    paging_command = "no page"

    async def _collect_status(self) -> StatusEnvelope:
        output = await self.shell("show system")
        return self.build_status(state=ConnectionState.CONNECTED, **parse_show_system(output))

    async def get_config(self, section: str | None = None) -> str:
        return await self.shell("show running-config")

    async def get_interfaces(self) -> str:
        return await self.shell("show interfaces brief")

    async def get_vlans(self) -> str:
        return await self.shell("show vlans")

    async def get_mac_table(self, vlan: int | None = None) -> str:
        return await self.shell(f"show mac-address vlan {vlan}" if vlan else "show mac-address")

    async def get_neighbors(self) -> str:
        return await self.shell("show lldp info remote-device")
