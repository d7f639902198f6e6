#!/usr/bin/env python3
"""
Resolution of a user supplied host string into a probe target.

A target is resolved once per probe attempt. The first address returned by
the system resolver wins and its family decides whether the attempt uses
ICMP (IPv4) or ICMPv6.
"""

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from . import get_probe_logger
from .errors import ResolutionError

logger = get_probe_logger(__name__)

# IP protocol numbers carried by the ICMP datagram sockets
ICMP_PROTOCOL = 1
ICMPV6_PROTOCOL = 58


@dataclass(frozen=True)
class Target:
    """
    Resolved destination of a single probe attempt.

    Attributes:
        host (str): Host string as given by the user.
        address (str): Textual IP address, without a zone suffix.
        family (int): socket.AF_INET or socket.AF_INET6.
        scope_id (int): IPv6 zone index, 0 when not scoped.
    """

    host: str
    address: str
    family: int
    scope_id: int = 0

    @property
    def is_ipv6(self) -> bool:
        return self.family == socket.AF_INET6

    @property
    def protocol(self) -> int:
        """IP protocol number for the target's ICMP flavour."""
        return ICMPV6_PROTOCOL if self.is_ipv6 else ICMP_PROTOCOL

    @property
    def sockaddr(self) -> Union[Tuple[str, int], Tuple[str, int, int, int]]:
        """Address tuple accepted by ``socket.sendto``."""
        if self.is_ipv6:
            return (self.address, 0, 0, self.scope_id)
        return (self.address, 0)

    def __str__(self) -> str:
        if self.is_ipv6 and self.scope_id:
            return f"{self.address}%{self.scope_id}"
        return self.address


def _scope_index(scope: str) -> int:
    """Turn an IPv6 zone (interface name or index) into an interface index."""
    if scope.isdigit():
        return int(scope)
    try:
        return socket.if_nametoindex(scope)
    except OSError as e:
        raise ResolutionError(f"Unknown IPv6 zone {scope!r}: {e}") from e


def _target_from_ip(host: str, ip, scope_id: int = 0) -> Target:
    """Build a Target, treating IPv4-mapped IPv6 addresses as IPv4."""
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if ip.version == 4:
        return Target(host=host, address=str(ip), family=socket.AF_INET)
    return Target(
        host=host, address=str(ip).split("%")[0], family=socket.AF_INET6, scope_id=scope_id
    )



def _normalize_host(host: str) -> str:
    if not host or not host.strip():
        raise ResolutionError("Empty host")
    return host.strip()


def _literal_target(host: str) -> Optional[Target]:
    """Target for an IP literal, None if the host is a name."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None

    scope = getattr(ip, "scope_id", None)
    target = _target_from_ip(host, ip, _scope_index(scope) if scope else 0)
    logger.debug(f"Host {host!r} is an IP literal: {target}")
    return target


def _target_from_addrinfo(host: str, infos: List[tuple]) -> Target:
    """Build a Target from the first getaddrinfo entry."""
    if not infos:
        raise ResolutionError(f"Cannot resolve {host!r}: no addresses returned")

    family, _, _, _, sockaddr = infos[0]
    address = sockaddr[0].split("%")[0]
    scope_id = sockaddr[3] if family == socket.AF_INET6 else 0

    try:
        ip = ipaddress.ip_address(address)
    except ValueError as e:
        raise ResolutionError(f"Resolver returned invalid address {address!r}") from e

    target = _target_from_ip(host, ip, scope_id)
    logger.debug(f"Resolved {host!r} to {target}")
    return target


def resolve_target(host: str) -> Target:
    """
    Resolve a host name or IP literal into a Target.

    Args:
        host: DNS name, IPv4 literal or IPv6 literal (optionally with a %zone suffix).

    Returns:
        Target: The resolved target.

    Raises:
        ResolutionError: If the host is empty or cannot be resolved.
    """
    host = _normalize_host(host)

    # IP literals do not need the system resolver
    target = _literal_target(host)
    if target is not None:
        return target

    try:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(f"Cannot resolve {host!r}: {e}") from e

    return _target_from_addrinfo(host, infos)


async def resolve_target_async(host: str) -> Target:
    """
    Resolve a host like resolve_target without blocking the event loop.

    Name lookups run in the loop's default executor, so a slow resolver
    does not stall other tasks or signal handlers.

    Raises:
        ResolutionError: If the host is empty or cannot be resolved.
    """
    host = _normalize_host(host)

    target = _literal_target(host)
    if target is not None:
        return target

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(
            host, None, family=socket.AF_UNSPEC, type=socket.SOCK_DGRAM
        )
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(f"Cannot resolve {host!r}: {e}") from e

    return _target_from_addrinfo(host, infos)
