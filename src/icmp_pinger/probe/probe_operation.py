#!/usr/bin/env python3
"""
This module provides the ProbeOperation class, an async context manager for a single echo round-trip.
It owns one unprivileged ICMP datagram socket for the duration of the attempt, sends the echo request,
waits for a reply until the deadline and classifies what came back.
"""

import asyncio
import ipaddress
import logging
import socket
import time
from typing import Callable, Optional, Set, Tuple

from . import get_probe_logger
from .echo_message import (
    IcmpMessage,
    build_echo_request,
    icmp_type_name,
    is_echo_reply,
    is_echo_request,
    parse_message,
    quoted_echo,
)
from .errors import (
    ParseError,
    PingError,
    ReceiveError,
    SerializationError,
    SocketError,
    TransmitError,
)
from .probe_result import (
    ProbeError,
    ProbeResult,
    ProbeState,
    ProbeSuccess,
    ProbeTimeout,
    ProbeUnexpectedReply,
)
from .resolver import Target

default_logger = get_probe_logger(__name__)

# Large enough for any ICMP message on a standard MTU link
RECV_BUFFER_SIZE = 1500


class ProbeOperation:
    """
    Context manager for a single probe attempt.

    The socket is opened on enter and closed on exit, whatever the outcome. Use it as:

        >>> async with ProbeOperation(target, identifier=0x1234) as operation:
        ...     result = await operation.execute()
    """

    def __init__(
        self,
        target: Target,
        identifier: int,
        sequence: int = 1,
        timeout: float = 0.5,
        strict_matching: bool = True,
        payload: bytes = b"",
        socket_factory: Callable[..., socket.socket] = socket.socket,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the ProbeOperation.

        Args:
            target (Target): The resolved host to probe.
            identifier (int): Echo identifier of this process.
            sequence (int): Echo sequence number of this attempt.
            timeout (float): Seconds to wait for a reply after sending.
            strict_matching (bool): Accept only echo replies matching identifier, sequence and source.
            payload (bytes): Echo data, empty by default.
            socket_factory (Callable): Creates the socket, called as (family, type, proto).
            logger (Optional[logging.Logger]): The logger to use for logging messages.
        """
        self.target = target
        self.identifier = identifier
        self.sequence = sequence
        self.timeout = timeout
        self.strict_matching = strict_matching
        self.payload = payload
        self.socket_factory = socket_factory
        self.logger = logger if logger is not None else default_logger

        self.sock: Optional[socket.socket] = None
        self._state = ProbeState.IDLE

    @property
    def state(self) -> ProbeState:
        """Current state of the attempt."""
        return self._state

    async def __aenter__(self):
        """
        Open the socket for this attempt.

        Returns:
            ProbeOperation: The initialized ProbeOperation instance.

        Raises:
            SocketError: If the socket cannot be created.
        """
        self._configure_socket()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close the socket; exceptions are not suppressed."""
        self._close_socket()
        return False

    def _configure_socket(self) -> None:
        """Create a non-blocking ICMP datagram socket for the target's family.

        Raises:
            SocketError: If the socket cannot be created.
        """
        try:
            self.sock = self.socket_factory(
                self.target.family, socket.SOCK_DGRAM, self.target.protocol
            )
            self.sock.setblocking(False)
        except OSError as e:
            self._close_socket()
            raise SocketError(
                f"Failed to create ICMP datagram socket "
                f"(family={self.target.family}, protocol={self.target.protocol}): {e}"
            ) from e

        self.logger.debug(f"Socket opened for probe of {self.target} (seq: {self.sequence})")

    def _close_socket(self) -> None:
        """Close the socket if it is open."""
        if self.sock is None:
            return
        try:
            self.sock.close()
        except OSError as e:
            self.logger.warning(f"Error during socket cleanup: {e}")
        finally:
            self.sock = None
            self.logger.debug(f"Socket closed for probe of {self.target}")

    async def execute(self) -> ProbeResult:
        """Send one echo request and wait for its reply.

        Returns:
            ProbeResult: ProbeSuccess, ProbeTimeout, ProbeUnexpectedReply or ProbeError.

        Raises:
            RuntimeError: If called outside the context manager.
        """
        if self.sock is None:
            raise RuntimeError("Socket not initialized. Cannot execute probe.")
        if self._state is not ProbeState.IDLE:
            raise RuntimeError(f"Probe already executed (state: {self._state.name})")

        try:
            packet = build_echo_request(
                self.target.protocol, self.identifier, self.sequence, self.payload
            )
        except SerializationError as e:
            return self._fail(e)

        start = time.perf_counter()
        try:
            self.sock.sendto(packet, self.target.sockaddr)
        except OSError as e:
            return self._fail(TransmitError(f"Failed to send to {self.target}: {e}"))
        self._state = ProbeState.SENT
        self.logger.debug(
            f"Echo request sent to {self.target} (id: {self.identifier}, seq: {self.sequence})"
        )

        return await self._collect_reply(start, start + self.timeout)

    async def _collect_reply(self, start: float, deadline: float) -> ProbeResult:
        """Wait for the reply until the deadline.

        Args:
            start (float): perf_counter value taken right before sending.
            deadline (float): perf_counter value after which the attempt times out.

        Returns:
            ProbeResult: The classified outcome.
        """
        identifiers = self._reply_identifiers()

        while True:
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                self._state = ProbeState.TIMED_OUT
                self.logger.debug(f"Timeout for {self.target}")
                return ProbeTimeout(target=self.target, timeout=self.timeout)

            try:
                data, addr = await asyncio.wait_for(
                    self._receive_packet(self.sock, RECV_BUFFER_SIZE), timeout=remaining
                )
            except asyncio.TimeoutError:
                # Loop re-checks the deadline
                continue
            except OSError as e:
                return self._fail(ReceiveError(f"Failed to receive from socket: {e}"))

            rtt = time.perf_counter() - start
            peer = addr[0] if isinstance(addr, tuple) else addr

            try:
                message = parse_message(self.target.protocol, data)
            except ParseError as e:
                return self._fail(e)

            result = self._classify(message, peer, rtt, identifiers)
            if result is not None:
                return result

    def _classify(
        self, message: IcmpMessage, peer: Optional[str], rtt: float, identifiers: Set[int]
    ) -> Optional[ProbeResult]:
        """Turn a parsed message into a result; None means ignore it and keep waiting."""
        protocol = self.target.protocol

        if is_echo_reply(protocol, message):
            if self.strict_matching and not self._matches(message, peer, identifiers):
                self.logger.debug(
                    f"Ignoring unrelated echo reply from {peer} "
                    f"(id: {message.identifier}, seq: {message.sequence})"
                )
                return None
            self._state = ProbeState.REPLIED
            self.logger.debug(f"Response from {self.target} after {rtt * 1000:.3f} ms")
            return ProbeSuccess(target=self.target, rtt=rtt)

        if (
            self.strict_matching
            and is_echo_request(protocol, message)
            and message.identifier in identifiers
        ):
            self.logger.debug(
                f"Filtering out our own outgoing packet (seq: {message.sequence})"
            )
            return None

        description = icmp_type_name(protocol, message.type)
        if self.strict_matching and not is_echo_request(protocol, message):
            quoted = quoted_echo(protocol, message)
            if quoted is not None and not self._quotes_request(quoted, identifiers):
                self.logger.debug(
                    f"Ignoring {description} from {peer} for another request "
                    f"(id: {quoted[0]}, seq: {quoted[1]})"
                )
                return None

        self._state = ProbeState.FAILED
        self.logger.debug(f"Unexpected {description} from {peer} for {self.target}")
        return ProbeUnexpectedReply(
            target=self.target,
            icmp_type=message.type,
            icmp_code=message.code,
            peer=peer,
            rtt=rtt,
            description=description,
        )

    def _matches(self, message: IcmpMessage, peer: Optional[str], identifiers: Set[int]) -> bool:
        if message.identifier not in identifiers or message.sequence != self.sequence:
            return False
        try:
            return ipaddress.ip_address(str(peer).split("%")[0]) == ipaddress.ip_address(
                self.target.address
            )
        except ValueError:
            return False

    def _quotes_request(self, quoted: Tuple[int, int], identifiers: Set[int]) -> bool:
        """Whether an ICMP error quotes the echo request of this attempt.

        An error without a usable quote cannot be told apart and is kept.
        """
        identifier, sequence = quoted
        return identifier in identifiers and sequence == self.sequence

    def _reply_identifiers(self) -> Set[int]:
        """Identifiers a matching reply may carry.

        Linux ping sockets replace the echo identifier with the socket's local
        port, which is known once the request has been sent.
        """
        identifiers = {self.identifier}
        try:
            local = self.sock.getsockname()
        except OSError:
            return identifiers
        if isinstance(local, tuple) and len(local) > 1 and local[1]:
            identifiers.add(local[1])
        return identifiers

    def _fail(self, error: PingError) -> ProbeError:
        self._state = ProbeState.FAILED
        self.logger.debug(f"Probe of {self.target} failed: {error}")
        return ProbeError(target=self.target, cause=error)

    async def _receive_packet(self, sock: socket.socket, size: int):
        """Helper to get both packet and address with asyncio.

        Args:
            sock (socket.socket): The socket to receive packets from.
            size (int): The size of the buffer to use for receiving packets.

        Returns:
            tuple: A tuple containing the received packet and the address of the sender.
        """
        future = asyncio.get_running_loop().create_future()

        def _read_callback():
            try:
                data, addr = sock.recvfrom(size)
                if not future.done():
                    future.set_result((data, addr))
            except (BlockingIOError, InterruptedError):
                # Will retry on next readable event
                pass
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)

        loop = asyncio.get_running_loop()
        loop.add_reader(sock.fileno(), _read_callback)
        try:
            return await future
        finally:
            loop.remove_reader(sock.fileno())
