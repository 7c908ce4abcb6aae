"""fleetlink - one connector contract for a heterogeneous device fleet.

Switches, firewalls, hypervisors, NAS appliances, IoT clouds and serial/AT
radios are reached over SSH shells, HTTP sessions or byte-stream framing
and exposed through the same status / command / config operations.
"""

__version__ = "0.1.0"

from fleetlink.config import Settings, get_settings, load_settings_from_file, set_settings

__all__ = [
    "Settings",
    "__version__",
    "get_settings",
    "load_settings_from_file",
    "set_settings",
]
