"""
ICMP and ICMPv6 echo message codec.

This module builds echo request packets for unprivileged datagram sockets
and parses the datagrams read back from them. The kernel supplies the IP
header on send, so only the ICMP part is handled here.
"""

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from . import get_probe_logger
from .errors import ParseError, SerializationError
from .resolver import ICMP_PROTOCOL, ICMPV6_PROTOCOL

logger = get_probe_logger(__name__)

# ICMP (RFC 792) message types
ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACHABLE = 3
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11

# ICMPv6 (RFC 4443) message types
ICMPV6_DEST_UNREACHABLE = 1
ICMPV6_PACKET_TOO_BIG = 2
ICMPV6_TIME_EXCEEDED = 3
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

ECHO_TYPES = {
    ICMP_PROTOCOL: (ICMP_ECHO_REQUEST, ICMP_ECHO_REPLY),
    ICMPV6_PROTOCOL: (ICMPV6_ECHO_REQUEST, ICMPV6_ECHO_REPLY),
}

_TYPE_NAMES = {
    ICMP_PROTOCOL: {
        ICMP_ECHO_REPLY: "echo reply",
        ICMP_DEST_UNREACHABLE: "destination unreachable",
        ICMP_ECHO_REQUEST: "echo request",
        ICMP_TIME_EXCEEDED: "time exceeded",
    },
    ICMPV6_PROTOCOL: {
        ICMPV6_DEST_UNREACHABLE: "destination unreachable",
        ICMPV6_PACKET_TOO_BIG: "packet too big",
        ICMPV6_TIME_EXCEEDED: "time exceeded",
        ICMPV6_ECHO_REQUEST: "echo request",
        ICMPV6_ECHO_REPLY: "echo reply",
    },
}

ICMP_HEADER = struct.Struct("!BBH")
ECHO_HEADER = struct.Struct("!BBHHH")
IPV6_HEADER_SIZE = 40


@dataclass(frozen=True)
class IcmpMessage:
    """
    A parsed or to-be-serialized ICMP message.

    Attributes:
        type (int): ICMP message type.
        code (int): ICMP message code.
        checksum (int): Checksum field as found on the wire.
        identifier (Optional[int]): Echo identifier, None for non-echo messages.
        sequence (Optional[int]): Echo sequence number, None for non-echo messages.
        payload (bytes): Bytes following the 8 byte header.
    """

    type: int
    code: int = 0
    checksum: int = 0
    identifier: Optional[int] = None
    sequence: Optional[int] = None
    payload: bytes = b""


def icmp_type_name(protocol: int, icmp_type: int) -> str:
    """Human readable name of an ICMP type for log messages."""
    name = _TYPE_NAMES.get(protocol, {}).get(icmp_type)
    return f"{name} ({icmp_type})" if name else f"type {icmp_type}"


def is_echo_reply(protocol: int, message: IcmpMessage) -> bool:
    return message.type == ECHO_TYPES[protocol][1]


def is_echo_request(protocol: int, message: IcmpMessage) -> bool:
    return message.type == ECHO_TYPES[protocol][0]


def calculate_checksum(data: bytes) -> int:
    """
    Calculate the RFC 1071 internet checksum of the data.

    Args:
        data: The bytes to checksum

    Returns:
        int: 16 bit one's complement checksum in host order
    """
    if len(data) % 2:
        data += b"\x00"

    total = 0
    for (word,) in struct.iter_unpack("!H", data):
        total += word

    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def build_echo_request(
    protocol: int, identifier: int, sequence: int, payload: bytes = b""
) -> bytes:
    """
    Serialize an echo request for the given protocol.

    ICMPv6 checksums cover an IPv6 pseudo header the sender does not see;
    datagram sockets fill them in, so the field is left as 0.

    Args:
        protocol: ICMP_PROTOCOL or ICMPV6_PROTOCOL
        identifier: Echo identifier (0-65535)
        sequence: Echo sequence number (0-65535)
        payload: Optional echo data

    Returns:
        bytes: The packet ready to be sent

    Raises:
        SerializationError: If the protocol or any field is invalid
    """
    if protocol not in ECHO_TYPES:
        raise SerializationError(f"Unsupported ICMP protocol number: {protocol}")
    if not isinstance(payload, (bytes, bytearray)):
        raise SerializationError(
            f"Echo payload must be bytes, got {type(payload).__name__}"
        )

    request_type = ECHO_TYPES[protocol][0]
    try:
        header = ECHO_HEADER.pack(request_type, 0, 0, identifier, sequence)
    except struct.error as e:
        raise SerializationError(
            f"Cannot serialize echo request (id={identifier}, seq={sequence}): {e}"
        ) from e

    packet = header + bytes(payload)
    if protocol == ICMPV6_PROTOCOL:
        return packet

    checksum = calculate_checksum(packet)
    return ECHO_HEADER.pack(request_type, 0, checksum, identifier, sequence) + bytes(
        payload
    )


def _strip_ipv4_header(data: bytes) -> bytes:
    """Drop a leading IPv4 header; some platforms deliver it on ping sockets."""
    if len(data) >= 20 and data[0] >> 4 == 4:
        header_length = (data[0] & 0x0F) * 4
        if header_length < 20 or len(data) < header_length:
            raise ParseError(f"Truncated IPv4 header ({len(data)} bytes)")
        return data[header_length:]
    return data


def parse_message(protocol: int, data: bytes) -> IcmpMessage:
    """
    Parse a received datagram as an ICMP message of the given protocol.

    Args:
        protocol: ICMP_PROTOCOL or ICMPV6_PROTOCOL
        data: Raw bytes read from the socket

    Returns:
        IcmpMessage: The parsed message

    Raises:
        ParseError: If the data is too short or the protocol is unknown
    """
    if protocol not in ECHO_TYPES:
        raise ParseError(f"Unsupported ICMP protocol number: {protocol}")

    if protocol == ICMP_PROTOCOL:
        data = _strip_ipv4_header(data)

    if len(data) < ICMP_HEADER.size:
        raise ParseError(f"ICMP message too short: {len(data)} bytes")

    icmp_type, icmp_code, checksum = ICMP_HEADER.unpack_from(data)

    if icmp_type not in ECHO_TYPES[protocol]:
        return IcmpMessage(
            type=icmp_type,
            code=icmp_code,
            checksum=checksum,
            payload=bytes(data[ECHO_HEADER.size :]),
        )

    if len(data) < ECHO_HEADER.size:
        raise ParseError(f"Echo message too short: {len(data)} bytes")

    _, _, _, identifier, sequence = ECHO_HEADER.unpack_from(data)
    return IcmpMessage(
        type=icmp_type,
        code=icmp_code,
        checksum=checksum,
        identifier=identifier,
        sequence=sequence,
        payload=bytes(data[ECHO_HEADER.size :]),
    )


def quoted_echo(protocol: int, message: IcmpMessage) -> Optional[Tuple[int, int]]:
    """
    Identifier and sequence of the echo request quoted in an ICMP error.

    Error messages carry the IP header of the offending datagram followed by
    at least the first 8 bytes of its payload, which for our requests is the
    echo header.

    Args:
        protocol: ICMP_PROTOCOL or ICMPV6_PROTOCOL
        message: A parsed non-echo message

    Returns:
        Optional[Tuple[int, int]]: (identifier, sequence), or None if the quoted
        datagram is missing, truncated or not an echo request
    """
    quoted = message.payload
    if protocol == ICMP_PROTOCOL:
        if len(quoted) < 20 or quoted[0] >> 4 != 4 or quoted[9] != ICMP_PROTOCOL:
            return None
        offset = (quoted[0] & 0x0F) * 4
    else:
        if len(quoted) < IPV6_HEADER_SIZE or quoted[0] >> 4 != 6:
            return None
        if quoted[6] != ICMPV6_PROTOCOL:
            return None
        offset = IPV6_HEADER_SIZE

    if offset < 20 or len(quoted) < offset + ECHO_HEADER.size:
        return None

    echo_type, _, _, identifier, sequence = ECHO_HEADER.unpack_from(quoted, offset)
    if echo_type != ECHO_TYPES[protocol][0]:
        return None
    return identifier, sequence
