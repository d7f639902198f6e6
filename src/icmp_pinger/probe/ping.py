"""
Ping CLI

Pings a single host forever with ICMP echo requests over an unprivileged
datagram socket, printing one line per attempt and a packet loss summary
every 10 attempts. Stop it with Ctrl+C.

TIP - ICMP datagram sockets on Linux:
    The user's group must be allowed by the ping group range, e.g.:
    sudo sysctl -w net.ipv4.ping_group_range="0 2147483647"
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from icmp_pinger.probe.errors import SocketError
from icmp_pinger.probe.monitor import PingMonitor
from icmp_pinger.probe.pinger import Pinger
from icmp_pinger.probe.settings import load_settings
from icmp_pinger.utils.init_pkg_logger import init_pkg_logger


async def run_monitor(monitor: PingMonitor) -> None:
    """Run the monitor until SIGINT or SIGTERM sets its stop event."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass
    try:
        await monitor.run(stop_event=stop_event)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ping",
        description="""Ping a host with ICMP echo requests

Examples of host specifications:
  - DNS name: example.com
  - IPv4 address: 192.168.1.1
  - IPv6 address: 2001:db8::1
  - Link-local IPv6 address with zone: fe80::1%eth0""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("host", help="Host name or IP address to ping")
    args = parser.parse_args(argv)

    # Console and log file output as configured in config/logger_config.yaml
    logger = init_pkg_logger()

    try:
        settings = load_settings(logger=logger)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    pinger = Pinger(
        timeout=settings.timeout,
        strict_matching=settings.strict_matching,
        logger=logger,
    )
    monitor = PingMonitor(
        args.host,
        pinger=pinger,
        interval=settings.interval,
        summary_every=settings.summary_every,
        logger=logger,
    )

    try:
        asyncio.run(run_monitor(monitor))
    except SocketError as e:
        logger.error(f"{e}. ICMP datagram sockets are not permitted for this user.")
        return 1

    counters = monitor.counters
    logger.info(
        f"{counters.sent} packets transmitted, {counters.received} received, "
        f"{monitor.format_summary()}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
