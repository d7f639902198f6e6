"""
Errors raised while probing a host with ICMP echo requests.

Inside a probe attempt these are never raised to the caller: they are carried
by a ``ProbeError`` result. They surface as exceptions only from
``ProbeResult.unwrap()``, ``Pinger.ping()`` and the monitor's fatal setup path.
"""


class PingError(RuntimeError):
    """Base class for all probe errors."""


class ResolutionError(PingError):
    """The host string could not be turned into an IP address."""


class SocketError(PingError):
    """The ICMP datagram socket could not be opened."""


class SerializationError(PingError):
    """The echo request could not be serialized."""


class TransmitError(PingError):
    """Sending the echo request failed."""


class ProbeTimeoutError(PingError):
    """No reply arrived before the deadline."""


class ReceiveError(PingError):
    """Reading from the socket failed."""


class ParseError(PingError):
    """A received datagram is not a valid ICMP message."""


class UnexpectedReplyError(PingError):
    """A message other than an echo reply was received."""
