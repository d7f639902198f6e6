"""
Outcome of a single probe attempt.

A probe attempt ends in exactly one of four results. Each result keeps the
target it was run against (None when resolution failed) so the caller can
report the resolved address.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .errors import PingError, ProbeTimeoutError, UnexpectedReplyError
from .resolver import Target


class ProbeState(Enum):
    """
    States of one probe attempt.

    Attributes:
        IDLE: Socket opened, nothing sent yet
        SENT: Echo request sent, waiting for a reply
        REPLIED: An echo reply was received
        TIMED_OUT: The deadline passed without a reply
        FAILED: An error or an unexpected message ended the attempt
    """

    IDLE = auto()
    SENT = auto()
    REPLIED = auto()
    TIMED_OUT = auto()
    FAILED = auto()


@dataclass(frozen=True)
class ProbeResult(ABC):
    """Base class of all probe outcomes."""

    target: Optional[Target]

    @property
    def succeeded(self) -> bool:
        return False

    @abstractmethod
    def unwrap(self) -> float:
        """
        Return the round-trip time of a successful probe.

        Returns:
            float: Round-trip time in seconds

        Raises:
            PingError: The error matching the outcome of a failed probe
        """
        pass


@dataclass(frozen=True)
class ProbeSuccess(ProbeResult):
    """A matching echo reply arrived; rtt is in seconds."""

    rtt: float

    @property
    def succeeded(self) -> bool:
        return True

    @property
    def rtt_ms(self) -> float:
        return self.rtt * 1000

    def unwrap(self) -> float:
        return self.rtt

    def __str__(self) -> str:
        return f"Reply from {self.target}: rtt {self.rtt_ms:.3f} ms"


@dataclass(frozen=True)
class ProbeTimeout(ProbeResult):
    """No reply before the deadline."""

    timeout: float

    def unwrap(self) -> float:
        raise ProbeTimeoutError(f"No reply from {self.target} within {self.timeout}s")

    def __str__(self) -> str:
        return f"No reply from {self.target} (timeout {self.timeout}s)"


@dataclass(frozen=True)
class ProbeError(ProbeResult):
    """The attempt failed; cause is one of the PingError subclasses."""

    cause: PingError

    def unwrap(self) -> float:
        raise self.cause

    def __str__(self) -> str:
        return f"Error: {self.cause}"


@dataclass(frozen=True)
class ProbeUnexpectedReply(ProbeResult):
    """A message other than an echo reply was received."""

    icmp_type: int
    icmp_code: int
    peer: Optional[str]
    rtt: float
    description: str = ""

    def unwrap(self) -> float:
        raise UnexpectedReplyError(str(self))

    def __str__(self) -> str:
        kind = self.description or f"type {self.icmp_type}"
        return f"Got {kind}, code {self.icmp_code} from {self.peer}"
