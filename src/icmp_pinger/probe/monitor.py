"""
Monitoring loop that pings one host at a fixed interval.

The monitor owns the sent/received counters, logs one line per attempt and a
packet loss summary every ``summary_every`` attempts. It runs until its stop
event is set.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from . import get_probe_logger
from .errors import SocketError
from .pinger import Pinger
from .probe_result import ProbeError, ProbeResult

default_logger = get_probe_logger(__name__)

NO_REPLY_LINE = "Ping: * (*), RTT: *"


@dataclass
class PingCounters:
    """Sent and received echo requests of one monitor run."""

    sent: int = 0
    received: int = 0

    @property
    def lost(self) -> int:
        return self.sent - self.received

    @property
    def loss_percent(self) -> float:
        """Share of attempts without a successful reply, in percent."""
        if self.sent == 0:
            return 0.0
        return 100.0 * self.lost / self.sent


def format_percent(value: float) -> str:
    """Render a percentage rounded to one decimal: 30.0 -> '30', 33.33 -> '33.3'."""
    return f"{round(value, 1):g}"


class PingMonitor:
    """
    Repeatedly probes a host and keeps packet loss statistics.

    Probe-level errors are logged and the loop continues. Only a socket
    error before any socket could ever be opened is fatal: it means the
    process is not allowed to open ICMP datagram sockets at all.
    """

    def __init__(
        self,
        host: str,
        pinger: Optional[Pinger] = None,
        interval: float = 2.0,
        summary_every: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the monitor.

        Args:
            host: Host name or IP literal to ping.
            pinger: Pinger used for the attempts, a default one if None.
            interval: Seconds to sleep between attempts.
            summary_every: Log a packet loss summary every N attempts.
            logger: Optional logger instance.
        """
        self.host = host
        self.logger = logger if logger is not None else default_logger
        self.pinger = pinger if pinger is not None else Pinger(logger=self.logger)
        self.interval = interval
        self.summary_every = summary_every
        self.counters = PingCounters()
        self._stop_event = asyncio.Event()
        self._socket_ready = False

    def format_attempt(self, result: ProbeResult) -> str:
        if result.succeeded:
            return f"Ping: {self.host} ({result.target}), RTT: {result.rtt_ms:.3f}ms"
        return NO_REPLY_LINE

    def format_summary(self) -> str:
        return (
            f"Packet Loss: {format_percent(self.counters.loss_percent)}% "
            f"({self.counters.lost} packets lost)"
        )

    async def run_attempt(self) -> ProbeResult:
        """
        Run and record one attempt.

        Returns:
            ProbeResult: Outcome of the attempt.

        Raises:
            SocketError: If no ICMP socket could be opened since the monitor started.
        """
        self.counters.sent += 1
        result = await self.pinger.probe_async(self.host)

        if isinstance(result, ProbeError) and isinstance(result.cause, SocketError):
            if not self._socket_ready:
                self.logger.error(f"Cannot open ICMP socket: {result.cause}")
                raise result.cause
        elif result.target is not None:
            self._socket_ready = True

        if result.succeeded:
            self.counters.received += 1
        else:
            self.logger.debug(f"Attempt {self.counters.sent} failed: {result}")

        self.logger.info(self.format_attempt(result))
        return result

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_attempts: Optional[int] = None,
    ) -> PingCounters:
        """
        Ping the host until stopped.

        Args:
            stop_event: Event that ends the loop when set, the monitor's own if None.
            max_attempts: Stop after this many attempts, unbounded if None.

        Returns:
            PingCounters: Counters at the time the loop ended.

        Raises:
            SocketError: If ICMP datagram sockets cannot be opened at all.
        """
        if stop_event is not None:
            self._stop_event = stop_event
        self.logger.info(f"Pinging {self.host} every {self.interval}s")

        while not self._stop_event.is_set():
            await self.run_attempt()

            if self.counters.sent % self.summary_every == 0:
                self.logger.info(self.format_summary())

            if max_attempts is not None and self.counters.sent >= max_attempts:
                break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        return self.counters

    def stop(self) -> None:
        """Ask a running loop to finish after the current attempt."""
        self._stop_event.set()
