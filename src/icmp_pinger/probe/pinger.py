import asyncio
import logging
import os
import socket
from typing import Callable, Optional, Tuple

from . import get_probe_logger
from .errors import ResolutionError, SocketError
from .probe_operation import ProbeOperation
from .probe_result import ProbeError, ProbeResult
from .resolver import Target, resolve_target_async

default_logger = get_probe_logger(__name__)


def process_identifier() -> int:
    """Echo identifier of this process, stable across attempts."""
    return os.getpid() & 0xFFFF


class Pinger:
    """
    Pinger runs single echo round-trips against a host:
        * Resolving the host string into a Target on every attempt.
        * Running one ProbeOperation, which owns the ICMP datagram socket for that attempt only.
        * Returning a ProbeResult instead of raising for any probe-level failure.

    Example usage:
        >>> from icmp_pinger.probe.pinger import Pinger
        >>> pinger = Pinger(timeout=1.0)
        >>> result = pinger.probe("example.com")
        >>> print(result)
    """

    def __init__(
        self,
        timeout: float = 0.5,
        strict_matching: bool = True,
        identifier: Optional[int] = None,
        socket_factory: Callable[..., socket.socket] = socket.socket,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the pinger.

        Args:
            timeout: Seconds to wait for a reply.
            strict_matching: Accept only echo replies matching identifier, sequence and source.
            identifier: Echo identifier, derived from the process id if None.
            socket_factory: Socket constructor, replaced in tests.
            logger: Optional logger instance.
        """
        self.timeout = timeout
        self.strict_matching = strict_matching
        self.identifier = process_identifier() if identifier is None else identifier
        self.socket_factory = socket_factory
        self.logger = logger if logger is not None else default_logger
        self._sequence = 0

    def next_sequence(self) -> int:
        """Sequence number for the next attempt: 1, 2, ... wrapping at 16 bits."""
        self._sequence = self._sequence % 0xFFFF + 1
        return self._sequence

    def probe(self, host: str) -> ProbeResult:
        """
        Run one probe synchronously.

        Args:
            host: Host name or IP literal.

        Returns:
            ProbeResult: Outcome of the attempt.
        """
        return asyncio.run(self.probe_async(host))

    async def probe_async(self, host: str) -> ProbeResult:
        """
        Run one probe: resolve, send one echo request, wait for the reply.

        Resolution and socket failures are returned as ProbeError so the
        caller decides whether they are fatal.

        Args:
            host: Host name or IP literal.

        Returns:
            ProbeResult: Outcome of the attempt.
        """
        try:
            target = await resolve_target_async(host)
        except ResolutionError as e:
            self.logger.debug(f"Resolution failed: {e}")
            return ProbeError(target=None, cause=e)

        try:
            async with ProbeOperation(
                target=target,
                identifier=self.identifier,
                sequence=self.next_sequence(),
                timeout=self.timeout,
                strict_matching=self.strict_matching,
                socket_factory=self.socket_factory,
                logger=self.logger,
            ) as operation:
                return await operation.execute()
        except SocketError as e:
            self.logger.debug(str(e))
            return ProbeError(target=target, cause=e)

    def ping(self, host: str) -> Tuple[Target, float]:
        """
        Ping a host once and return its address and round-trip time.

        Args:
            host: Host name or IP literal.

        Returns:
            Tuple[Target, float]: The resolved target and the RTT in seconds.

        Raises:
            PingError: The error matching the outcome if the probe did not succeed.
        """
        result = self.probe(host)
        return result.target, result.unwrap()
