"""
Target endpoint resolution.

Targets are given as ``host:port`` or ``[v6-host]:port`` strings. Each one is
resolved exactly once, at relay construction, into an immutable
``TargetEndpoint``; nothing is re-resolved while the relay runs.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Iterable, Optional, Tuple, Union

from broadcast_relay.exceptions import ResolutionError

IPAddress = Union[IPv4Address, IPv6Address]
SockAddr = Tuple  # (host, port) or (host, port, flowinfo, scope_id)


def _normalize(ip: IPAddress) -> IPAddress:
    """Collapse IPv4-mapped IPv6 addresses onto their IPv4 form."""
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _scope_index(zone: Optional[str]) -> int:
    """Map an IPv6 zone (interface name or number) to a sin6_scope_id."""
    if not zone:
        return 0
    if zone.isdigit():
        return int(zone)
    return socket.if_nametoindex(zone)


@dataclass(frozen=True)
class TargetEndpoint:
    """Resolved destination for forwarded datagrams."""
    ip: IPAddress
    port: int
    raw: str = ""

    @property
    def family(self) -> int:
        return socket.AF_INET6 if self.ip.version == 6 else socket.AF_INET

    @property
    def sockaddr(self) -> SockAddr:
        if self.ip.version == 6:
            host = str(self.ip).split("%", 1)[0]
            return (host, self.port, 0, _scope_index(self.ip.scope_id))
        return (str(self.ip), self.port)

    def matches(self, addr: SockAddr) -> bool:
        """True when ``addr`` (as returned by recvfrom) is this exact IP and port."""
        try:
            src_ip = ip_address(addr[0])
            src_port = int(addr[1])
        except (ValueError, TypeError, IndexError):
            return False
        return src_port == self.port and _normalize(src_ip) == _normalize(self.ip)

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


def split_host_port(text: str) -> Tuple[str, str]:
    """Split ``host:port`` / ``[host]:port``; raise ValueError on malformed input."""
    if text.startswith("["):
        end = text.find("]")
        if end < 0:
            raise ValueError("missing ']' in address")
        host, rest = text[1:end], text[end + 1:]
        if not rest.startswith(":"):
            raise ValueError("missing port in address")
        port = rest[1:]
    else:
        host, sep, port = text.rpartition(":")
        if not sep:
            raise ValueError("missing port in address")
        if ":" in host:
            raise ValueError("too many colons in address")
    if not host:
        raise ValueError("missing host in address")
    if not port:
        raise ValueError("missing port in address")
    return host, port


def _parse_port(port: str) -> int:
    if not port.isdigit():
        raise ValueError(f"invalid port {port!r}")
    value = int(port)
    if not (1 <= value <= 65535):
        raise ValueError(f"port out of range (1-65535): {value}")
    return value


def _checked(target: TargetEndpoint) -> TargetEndpoint:
    """Reject IPv6 zones naming an interface this host does not have."""
    try:
        target.sockaddr
    except OSError as exc:
        raise ResolutionError(target.raw, f"unknown zone {target.ip.scope_id!r}: {exc}") from exc
    return target


def resolve_target(text: str) -> TargetEndpoint:
    """Resolve one target string, raising ResolutionError naming the target on failure."""
    raw = text.strip()
    try:
        host, port_text = split_host_port(raw)
        port = _parse_port(port_text)
    except ValueError as exc:
        raise ResolutionError(raw, str(exc)) from exc

    try:
        literal = ip_address(host)
    except ValueError:
        literal = None
    if literal is not None:
        return _checked(TargetEndpoint(ip=literal, port=port, raw=raw))

    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as exc:
        raise ResolutionError(raw, str(exc)) from exc
    if not infos:
        raise ResolutionError(raw, "no addresses found")

    family, _, _, _, sockaddr = infos[0]
    if family not in (socket.AF_INET, socket.AF_INET6):
        raise ResolutionError(raw, f"unsupported address family {family}")
    resolved = sockaddr[0]
    if family == socket.AF_INET6 and sockaddr[3] and "%" not in resolved:
        resolved = f"{resolved}%{sockaddr[3]}"
    return _checked(TargetEndpoint(ip=ip_address(resolved), port=port, raw=raw))


def resolve_targets(texts: Iterable[str]) -> Tuple[TargetEndpoint, ...]:
    """Resolve every target, preserving the configured order."""
    return tuple(resolve_target(text) for text in texts)
