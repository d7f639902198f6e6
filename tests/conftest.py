import socket
import struct
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import MagicMock

import pytest

from icmp_pinger import get_config_path, get_project_root, load_config
from icmp_pinger.probe.echo_message import (
    ECHO_TYPES,
    calculate_checksum,
    parse_message,
)
from icmp_pinger.probe.resolver import ICMP_PROTOCOL, ICMPV6_PROTOCOL


@pytest.fixture(scope="session")
def project_config():
    """Fixture to load project config.yaml."""
    config_path = get_config_path()
    return load_config(config_path)


sc_path = "tests/data/sample_config.yaml"


@pytest.fixture(scope="session")
def sample_config_path():
    """Fixture to use sample config.yaml path."""
    return get_project_root() / Path(sc_path)


@pytest.fixture(scope="session")
def sample_config(sample_config_path):
    """Fixture to load sample config.yaml."""
    return load_config(sample_config_path)


@pytest.fixture
def mock_logger():
    """
    Fixture providing a mock logger for testing.

    Records every message per level in ``logger.messages`` for assertions.

    Returns:
        MagicMock: A configured mock object that mimics a logging.Logger
    """
    logger = MagicMock()
    logger.messages = {"debug": [], "info": [], "warning": [], "error": []}

    def store_message(level, *args, **kwargs):
        msg = args[0] if args else kwargs.get("msg", "")
        logger.messages[level].append(msg)

    for level in logger.messages:
        method = MagicMock()
        method.side_effect = lambda *args, _level=level, **kwargs: store_message(
            _level, *args, **kwargs
        )
        setattr(logger, level, method)

    return logger


def make_icmp(
    icmp_type: int,
    code: int = 0,
    identifier: int = 0,
    sequence: int = 0,
    payload: bytes = b"",
) -> bytes:
    """Build an ICMP message with a valid checksum, as a peer would send it."""
    header = struct.pack("!BBHHH", icmp_type, code, 0, identifier, sequence)
    checksum = calculate_checksum(header + payload)
    return struct.pack("!BBHHH", icmp_type, code, checksum, identifier, sequence) + payload


def protocol_of(packet: bytes) -> int:
    return ICMPV6_PROTOCOL if packet[0] == ECHO_TYPES[ICMPV6_PROTOCOL][0] else ICMP_PROTOCOL


def echo_responder(packet: bytes) -> List[bytes]:
    """Answer with a genuine echo reply."""
    protocol = protocol_of(packet)
    request = parse_message(protocol, packet)
    return [
        make_icmp(
            ECHO_TYPES[protocol][1],
            identifier=request.identifier,
            sequence=request.sequence,
            payload=request.payload,
        )
    ]


def spoofed_responder(packet: bytes) -> List[bytes]:
    """Answer with an echo reply that belongs to somebody else."""
    protocol = protocol_of(packet)
    request = parse_message(protocol, packet)
    return [
        make_icmp(
            ECHO_TYPES[protocol][1],
            identifier=(request.identifier + 1) & 0xFFFF,
            sequence=request.sequence,
        )
    ]


def quote_datagram(packet: bytes) -> bytes:
    """A sent ICMP packet behind the IP header, as quoted in an ICMP error."""
    if protocol_of(packet) == ICMPV6_PROTOCOL:
        loopback = socket.inet_pton(socket.AF_INET6, "::1")
        header = struct.pack("!IHBB", 6 << 28, len(packet), ICMPV6_PROTOCOL, 64)
        return header + loopback + loopback + packet
    loopback = socket.inet_aton("127.0.0.1")
    header = struct.pack(
        "!BBHHHBBH", 0x45, 0, 20 + len(packet), 0, 0, 64, ICMP_PROTOCOL, 0
    )
    return header + loopback + loopback + packet


def make_unreachable(quoted_packet: bytes) -> bytes:
    """Destination unreachable (port unreachable for IPv4) quoting a request."""
    if protocol_of(quoted_packet) == ICMPV6_PROTOCOL:
        return make_icmp(1, code=4, payload=quote_datagram(quoted_packet))
    return make_icmp(3, code=3, payload=quote_datagram(quoted_packet))


def unreachable_responder(packet: bytes) -> List[bytes]:
    """Answer with a destination unreachable for the request just sent."""
    return [make_unreachable(packet)]


def foreign_unreachable_responder(packet: bytes) -> List[bytes]:
    """Answer with a destination unreachable caused by another process's request."""
    protocol = protocol_of(packet)
    request = parse_message(protocol, packet)
    foreign = make_icmp(
        ECHO_TYPES[protocol][0],
        identifier=(request.identifier + 1) & 0xFFFF,
        sequence=request.sequence,
    )
    return [make_unreachable(foreign)]


class FakeIcmpSocket:
    """
    Stand-in for an ICMP datagram socket.

    Backed by a real AF_UNIX socketpair so the event loop can watch its
    descriptor and descriptor counts can be asserted. Whatever the responder
    returns for a sent packet becomes readable on the socket.
    """

    def __init__(
        self,
        family: int,
        type: int,
        proto: int,
        responder: Optional[Callable[[bytes], List[bytes]]] = None,
        peer: str = "127.0.0.1",
        local_id: int = 0,
    ):
        self.family = family
        self.type = type
        self.proto = proto
        self.responder = responder
        self.peer = peer
        self.local_id = local_id
        self.sent = []
        self.closed = False
        self._inbox, self._outbox = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)

    def setblocking(self, flag: bool) -> None:
        self._inbox.setblocking(flag)

    def fileno(self) -> int:
        return self._inbox.fileno()

    def getsockname(self):
        return ("0.0.0.0", self.local_id)

    def sendto(self, data: bytes, address) -> int:
        self.sent.append((data, address))
        if self.responder is not None:
            for reply in self.responder(data):
                self._outbox.send(reply)
        return len(data)

    def recvfrom(self, size: int):
        return self._inbox.recv(size), (self.peer, 0)

    def close(self) -> None:
        self.closed = True
        self._inbox.close()
        self._outbox.close()


class FakeSocketFactory:
    """Callable replacing socket.socket; keeps every socket it created."""

    def __init__(self, responder=None, peer="127.0.0.1", local_id=0, error=None):
        self.responder = responder
        self.peer = peer
        self.local_id = local_id
        self.error = error
        self.sockets: List[FakeIcmpSocket] = []

    def __call__(self, family, type, proto):
        if self.error is not None:
            raise self.error
        sock = FakeIcmpSocket(
            family,
            type,
            proto,
            responder=self.responder,
            peer=self.peer,
            local_id=self.local_id,
        )
        self.sockets.append(sock)
        return sock


@pytest.fixture
def socket_factory():
    """Fixture building FakeSocketFactory instances."""
    return FakeSocketFactory


@pytest.fixture
def icmp_packet():
    """Fixture giving the make_icmp packet builder."""
    return make_icmp


@pytest.fixture
def echo_reply():
    return echo_responder


@pytest.fixture
def spoofed_reply():
    return spoofed_responder


@pytest.fixture
def unreachable_reply():
    return unreachable_responder


@pytest.fixture
def foreign_unreachable_reply():
    return foreign_unreachable_responder


@pytest.fixture
def unreachable_packet():
    """Fixture giving the make_unreachable builder."""
    return make_unreachable
