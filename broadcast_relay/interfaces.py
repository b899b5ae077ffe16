"""Local IPv4 interface discovery, used to pick broadcast targets on other segments."""

import socket
from dataclasses import dataclass
from typing import List, Optional

import psutil


@dataclass(frozen=True)
class InterfaceAddress:
    name: str
    address: str
    netmask: Optional[str] = None
    broadcast: Optional[str] = None


def list_ipv4_interfaces() -> List[InterfaceAddress]:
    """Return every AF_INET address on the host, sorted by interface name."""
    found: List[InterfaceAddress] = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            found.append(
                InterfaceAddress(
                    name=name,
                    address=addr.address,
                    netmask=addr.netmask,
                    broadcast=addr.broadcast,
                )
            )
    found.sort(key=lambda item: (item.name, item.address))
    return found


def format_interfaces(interfaces: List[InterfaceAddress]) -> str:
    if not interfaces:
        return "No IPv4 interfaces found"
    lines = [f"{'INTERFACE':<16} {'ADDRESS':<16} {'NETMASK':<16} BROADCAST"]
    for item in interfaces:
        lines.append(
            f"{item.name:<16} {item.address:<16} {item.netmask or '-':<16} {item.broadcast or '-'}"
        )
    return "\n".join(lines)
