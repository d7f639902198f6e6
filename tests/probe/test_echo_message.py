import struct

import pytest

from icmp_pinger.probe.echo_message import (
    ICMP_DEST_UNREACHABLE,
    ICMP_ECHO_REPLY,
    ICMP_ECHO_REQUEST,
    ICMPV6_ECHO_REPLY,
    ICMPV6_ECHO_REQUEST,
    ICMPV6_TIME_EXCEEDED,
    IcmpMessage,
    build_echo_request,
    calculate_checksum,
    icmp_type_name,
    is_echo_reply,
    is_echo_request,
    parse_message,
    quoted_echo,
)
from icmp_pinger.probe.errors import ParseError, SerializationError
from icmp_pinger.probe.resolver import ICMP_PROTOCOL, ICMPV6_PROTOCOL


class TestChecksum:
    def test_rfc1071_example(self):
        # Worked example from RFC 1071 section 3
        data = bytes([0x00, 0x01, 0xF2, 0x03, 0xF4, 0xF5, 0xF6, 0xF7])
        assert calculate_checksum(data) == ~0xDDF2 & 0xFFFF

    def test_odd_length_is_padded(self):
        assert calculate_checksum(b"\x01") == calculate_checksum(b"\x01\x00")

    def test_packet_with_checksum_verifies_to_zero(self):
        packet = build_echo_request(ICMP_PROTOCOL, 0x1234, 7, b"payload")
        assert calculate_checksum(packet) == 0


class TestBuildEchoRequest:
    def test_ipv4_layout(self):
        packet = build_echo_request(ICMP_PROTOCOL, identifier=0xBEEF, sequence=1)
        icmp_type, code, checksum, identifier, sequence = struct.unpack("!BBHHH", packet)
        assert len(packet) == 8
        assert icmp_type == ICMP_ECHO_REQUEST
        assert code == 0
        assert checksum != 0
        assert identifier == 0xBEEF
        assert sequence == 1

    def test_ipv6_layout_leaves_checksum_to_kernel(self):
        packet = build_echo_request(ICMPV6_PROTOCOL, identifier=42, sequence=9, payload=b"ab")
        icmp_type, code, checksum, identifier, sequence = struct.unpack("!BBHHH", packet[:8])
        assert icmp_type == ICMPV6_ECHO_REQUEST
        assert checksum == 0
        assert (identifier, sequence) == (42, 9)
        assert packet[8:] == b"ab"

    @pytest.mark.parametrize(
        "identifier, sequence", [(-1, 1), (0x10000, 1), (1, -1), (1, 0x10000)]
    )
    def test_out_of_range_fields(self, identifier, sequence):
        with pytest.raises(SerializationError):
            build_echo_request(ICMP_PROTOCOL, identifier, sequence)

    def test_unknown_protocol(self):
        with pytest.raises(SerializationError, match="Unsupported"):
            build_echo_request(17, 1, 1)

    def test_payload_must_be_bytes(self):
        with pytest.raises(SerializationError, match="bytes"):
            build_echo_request(ICMP_PROTOCOL, 1, 1, payload="text")


class TestParseMessage:
    def test_echo_reply(self, icmp_packet):
        message = parse_message(
            ICMP_PROTOCOL, icmp_packet(ICMP_ECHO_REPLY, identifier=5, sequence=6, payload=b"x")
        )
        assert message.type == ICMP_ECHO_REPLY
        assert message.identifier == 5
        assert message.sequence == 6
        assert message.payload == b"x"
        assert is_echo_reply(ICMP_PROTOCOL, message)
        assert not is_echo_request(ICMP_PROTOCOL, message)

    def test_ipv6_echo_reply(self, icmp_packet):
        message = parse_message(
            ICMPV6_PROTOCOL, icmp_packet(ICMPV6_ECHO_REPLY, identifier=1, sequence=2)
        )
        assert is_echo_reply(ICMPV6_PROTOCOL, message)
        # An ICMPv6 echo reply type means nothing to ICMPv4
        assert not is_echo_reply(ICMP_PROTOCOL, message)

    def test_leading_ipv4_header_is_skipped(self, icmp_packet):
        ip_header = bytes([0x45]) + bytes(19)
        message = parse_message(
            ICMP_PROTOCOL, ip_header + icmp_packet(ICMP_ECHO_REPLY, identifier=3, sequence=4)
        )
        assert message.type == ICMP_ECHO_REPLY
        assert (message.identifier, message.sequence) == (3, 4)

    def test_non_echo_message_has_no_identifier(self, icmp_packet):
        message = parse_message(ICMP_PROTOCOL, icmp_packet(ICMP_DEST_UNREACHABLE, code=1))
        assert message.type == ICMP_DEST_UNREACHABLE
        assert message.code == 1
        assert message.identifier is None
        assert message.sequence is None

    def test_short_non_echo_message(self):
        message = parse_message(ICMPV6_PROTOCOL, bytes([ICMPV6_TIME_EXCEEDED, 0, 0, 0]))
        assert message == IcmpMessage(type=ICMPV6_TIME_EXCEEDED)

    @pytest.mark.parametrize("data", [b"", b"\x00", b"\x00\x00\x00"])
    def test_too_short(self, data):
        with pytest.raises(ParseError, match="too short"):
            parse_message(ICMP_PROTOCOL, data)

    def test_truncated_echo(self):
        with pytest.raises(ParseError, match="Echo message too short"):
            parse_message(ICMP_PROTOCOL, bytes([ICMP_ECHO_REPLY, 0, 0, 0, 0, 1]))

    def test_unknown_protocol(self):
        with pytest.raises(ParseError, match="Unsupported"):
            parse_message(6, bytes(8))


def test_icmp_type_name():
    assert icmp_type_name(ICMP_PROTOCOL, 3) == "destination unreachable (3)"
    assert icmp_type_name(ICMPV6_PROTOCOL, 129) == "echo reply (129)"
    assert icmp_type_name(ICMP_PROTOCOL, 200) == "type 200"


class TestQuotedEcho:
    """ICMP errors quote the IP header and echo header of the offending request."""

    def test_ipv4_quote(self, unreachable_packet):
        request = build_echo_request(ICMP_PROTOCOL, 0x1234, 7, b"data")
        message = parse_message(ICMP_PROTOCOL, unreachable_packet(request))
        assert message.type == ICMP_DEST_UNREACHABLE
        assert quoted_echo(ICMP_PROTOCOL, message) == (0x1234, 7)

    def test_ipv6_quote(self, unreachable_packet):
        request = build_echo_request(ICMPV6_PROTOCOL, 0xBEEF, 300)
        message = parse_message(ICMPV6_PROTOCOL, unreachable_packet(request))
        assert quoted_echo(ICMPV6_PROTOCOL, message) == (0xBEEF, 300)

    def test_ipv4_options_are_skipped(self):
        request = build_echo_request(ICMP_PROTOCOL, 1, 2)
        # IHL of 6 words: one 4 byte option after the fixed header
        ip_header = bytes([0x46, 0, 0, 52]) + bytes(5) + bytes([ICMP_PROTOCOL]) + bytes(14)
        message = IcmpMessage(type=ICMP_DEST_UNREACHABLE, payload=ip_header + request)
        assert quoted_echo(ICMP_PROTOCOL, message) == (1, 2)

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            bytes(8),
            # Truncated after the IPv4 header
            bytes([0x45]) + bytes(8) + bytes([ICMP_PROTOCOL]) + bytes(10),
            # Quoted datagram is UDP, not ICMP
            bytes([0x45]) + bytes(8) + bytes([17]) + bytes(10) + bytes(8),
        ],
    )
    def test_no_usable_ipv4_quote(self, payload):
        message = IcmpMessage(type=ICMP_DEST_UNREACHABLE, payload=payload)
        assert quoted_echo(ICMP_PROTOCOL, message) is None

    def test_quoted_reply_is_not_a_request(self, icmp_packet):
        reply = icmp_packet(ICMP_ECHO_REPLY, identifier=1, sequence=1)
        ip_header = bytes([0x45]) + bytes(8) + bytes([ICMP_PROTOCOL]) + bytes(10)
        message = IcmpMessage(type=ICMP_DEST_UNREACHABLE, payload=ip_header + reply)
        assert quoted_echo(ICMP_PROTOCOL, message) is None

    def test_ipv6_quote_of_other_protocol(self):
        ip_header = bytes([0x60]) + bytes(5) + bytes([17]) + bytes(33)
        message = IcmpMessage(type=1, payload=ip_header + bytes(8))
        assert quoted_echo(ICMPV6_PROTOCOL, message) is None
