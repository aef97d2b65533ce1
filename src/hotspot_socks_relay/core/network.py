"""Network interface discovery for displaying the relay address.

The relay always listens on every interface; this module only answers the
question "which address should other devices type in?". It ranks the host's
IPv4 interfaces:
- Hotspot bridges (``bridge*``, ``ap*``) first
- Then wireless interfaces
- Then any other interface that is up with a routable address

Loopback and link-local addresses are never suggested.

Example:
    interface = scan_interfaces()
    if interface:
        print(f"Point clients at {interface.ip}:1080")
"""

import os
import socket
from dataclasses import dataclass
from pathlib import Path

import psutil

HOTSPOT_PREFIXES = ("bridge", "ap")
WIRELESS_PREFIXES = ("wlan", "wifi", "wlp", "wl", "en")
SKIPPED_PREFIXES = ("lo", "vmnet", "docker", "veth", "utun")
UNROUTABLE_PREFIXES = ("127.", "169.254.")


@dataclass
class NetworkInterface:
    """Network interface representation with its key properties.

    Attributes:
        name: Interface name (e.g., 'bridge100', 'wlan0')
        ip: IPv4 address assigned to the interface
        is_up: Boolean indicating if the interface is up and running
        is_wireless: Boolean indicating if this is a wireless interface
        is_hotspot: Boolean indicating if this looks like a hotspot bridge
    """

    name: str
    ip: str
    is_up: bool
    is_wireless: bool
    is_hotspot: bool = False

    @property
    def rank(self) -> int:
        if self.is_hotspot:
            return 0
        if self.is_wireless:
            return 1
        return 2


def _is_wireless(name: str, flags: str) -> bool:
    return (
        name.startswith(WIRELESS_PREFIXES)
        or "802.11" in flags
        or (os.name != "nt" and Path(f"/sys/class/net/{name}/wireless").exists())
    )


def list_interfaces() -> list[NetworkInterface]:
    """List usable IPv4 interfaces, best candidate first."""
    stats = psutil.net_if_stats()
    interfaces = []
    for name, addrs in psutil.net_if_addrs().items():
        if name.startswith(SKIPPED_PREFIXES):
            continue

        ipv4 = next((addr.address for addr in addrs if addr.family == socket.AF_INET), None)
        if not ipv4 or ipv4.startswith(UNROUTABLE_PREFIXES):
            continue

        iface_stats = stats.get(name)
        if not iface_stats or not iface_stats.isup:
            continue

        interfaces.append(
            NetworkInterface(
                name=name,
                ip=ipv4,
                is_up=True,
                is_wireless=_is_wireless(name, str(getattr(iface_stats, "flags", ""))),
                is_hotspot=name.startswith(HOTSPOT_PREFIXES),
            )
        )

    return sorted(interfaces, key=lambda iface: iface.rank)


def scan_interfaces() -> NetworkInterface | None:
    """Return the interface other devices most likely reach us on."""
    interfaces = list_interfaces()
    return interfaces[0] if interfaces else None
