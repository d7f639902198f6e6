from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from icmp_pinger import get_config_path, load_config
from icmp_pinger.utils.config_utils import validate_config_keys

from . import get_probe_logger

default_logger = get_probe_logger(__name__)

SETTINGS_SECTION = "ping"
REQUIRED_KEYS = ("timeout", "interval", "summary_every", "strict_matching")


def _invalid(key: str, value: Any, expected: str) -> None:
    raise RuntimeError(
        f"Configuration error: invalid value in '{SETTINGS_SECTION}': "
        f"'{key}' must be {expected}, got {value!r}"
    )


def _check_type(key: str, value: Any, types) -> None:
    if isinstance(value, bool) or not isinstance(value, types):
        expected = "an integer" if types is int else "a number"
        _invalid(key, value, expected)


@dataclass(frozen=True)
class PingSettings:
    """
    Runtime settings of the ping monitor.

    Attributes:
        timeout (float): Seconds to wait for a reply to one echo request.
        interval (float): Seconds to sleep between attempts.
        summary_every (int): Log a packet loss summary every N attempts.
        strict_matching (bool): Accept only echo replies matching the request.
    """

    timeout: float = 0.5
    interval: float = 2.0
    summary_every: int = 10
    strict_matching: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PingSettings":
        """
        Build settings from the 'ping' section of a configuration dictionary.

        Raises:
            RuntimeError: If the section or keys are missing or hold invalid values.
        """
        validate_config_keys(config, SETTINGS_SECTION, REQUIRED_KEYS)
        section = config[SETTINGS_SECTION]

        # bool is an int subclass, so it is rejected explicitly for numbers
        for key in ("timeout", "interval"):
            _check_type(key, section[key], (int, float))
        _check_type("summary_every", section["summary_every"], int)
        if not isinstance(section["strict_matching"], bool):
            _invalid("strict_matching", section["strict_matching"], "a boolean")

        settings = cls(
            timeout=float(section["timeout"]),
            interval=float(section["interval"]),
            summary_every=section["summary_every"],
            strict_matching=section["strict_matching"],
        )

        if settings.timeout <= 0:
            raise RuntimeError("Configuration error: 'timeout' must be positive")
        if settings.interval < 0:
            raise RuntimeError("Configuration error: 'interval' must not be negative")
        if settings.summary_every <= 0:
            raise RuntimeError("Configuration error: 'summary_every' must be positive")

        return settings

    @property
    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_settings(
    config_path: Optional[Path] = None, logger: Optional[logging.Logger] = None
) -> PingSettings:
    """
    Load ping settings from the project config file.

    Falls back to the default settings when no config file exists.

    Args:
        config_path: Path to a YAML config file, default is config/config.yaml
        logger: Logger for the fallback warning

    Returns:
        PingSettings: The loaded settings

    Raises:
        RuntimeError: If the config file exists but is invalid
    """
    log = logger if logger is not None else default_logger
    try:
        path = config_path if config_path is not None else get_config_path()
    except FileNotFoundError as e:
        log.warning(f"{e}; using default settings")
        return PingSettings()

    if not Path(path).exists():
        log.warning(f"Configuration file not found: {path}; using default settings")
        return PingSettings()

    settings = PingSettings.from_config(load_config(path))
    log.debug(f"Loaded settings from {path}: {settings.as_dict}")
    return settings
