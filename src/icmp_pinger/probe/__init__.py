import logging

from icmp_pinger import logger_main

# Loggers of the probe modules hang below the package logger
probe_logger = f"{logger_main}.probe"


def get_probe_logger(name: str) -> logging.Logger:
    """Get the package logger for a probe module.

    Args:
        name: Module ``__name__``; only its last component is used.

    Returns:
        logging.Logger: Logger named ``icmp_pinger.probe.<module>``.
    """
    return logging.getLogger(f"{probe_logger}.{name.split('.')[-1]}")
