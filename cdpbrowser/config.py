"""Configuration for browser connections.

Layered sources, highest precedence first:
explicit overrides > CDP_* environment variables > ~/.cdprc (JSON) > defaults

Values from the file or the environment that fail validation are logged
and skipped; invalid explicit overrides raise, since they come from code.

Usage:
    >>> config = Configuration.load(slow_mo=0.25)
    >>> browser = await Browser.connect(transport, config=config)
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, NamedTuple

from .exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CDP_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


def _non_negative(value: float) -> bool:
    return value >= 0


def _positive(value: int) -> bool:
    return value > 0


class Setting(NamedTuple):
    default: Any
    convert: Callable[[Any], Any]
    check: Callable[[Any], bool]
    description: str


SETTINGS: Dict[str, Setting] = {
    "wait_for_target_timeout": Setting(30.0, float, _non_negative, "seconds, 0 waits forever"),
    "command_timeout": Setting(0.0, float, _non_negative, "seconds, 0 disables the timeout"),
    "slow_mo": Setting(0.0, float, _non_negative, "seconds slept before every outbound frame"),
    "max_size": Setting(2_097_152, int, _positive, "largest WebSocket frame in bytes"),
    "log_level": Setting("INFO", lambda v: str(v).upper(), lambda v: v in LOG_LEVELS, "logging level name"),
    "log_format": Setting("text", lambda v: str(v).lower(), lambda v: v in LOG_FORMATS, "text or json"),
}


class Configuration:
    """Settings shared by Browser.connect and setup_logging.

    Attributes:
        wait_for_target_timeout: Default Browser.wait_for_target timeout (default: 30.0)
        command_timeout: Per-command timeout (default: 0.0, no timeout)
        slow_mo: Delay before every outbound message (default: 0.0)
        max_size: Maximum WebSocket message size (default: 2MB)
        log_level: Logging level (default: "INFO")
        log_format: "text" or "json" (default: "text")
    """

    DEFAULTS = {name: setting.default for name, setting in SETTINGS.items()}

    def __init__(self):
        self.wait_for_target_timeout: float = SETTINGS["wait_for_target_timeout"].default
        self.command_timeout: float = SETTINGS["command_timeout"].default
        self.slow_mo: float = SETTINGS["slow_mo"].default
        self.max_size: int = SETTINGS["max_size"].default
        self.log_level: str = SETTINGS["log_level"].default
        self.log_format: str = SETTINGS["log_format"].default

    @classmethod
    def load(cls, file_path: str = "~/.cdprc", **overrides) -> "Configuration":
        config = cls()
        config.load_from_file(file_path)
        config.load_from_env()
        config.merge(**overrides)
        return config

    def load_from_file(self, file_path: str) -> None:
        """Merge settings from a JSON object file; a missing file is not an error."""
        path = Path(file_path).expanduser()
        if not path.exists():
            logger.debug(f"Config file not found: {path}")
            return

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in config file {path}: {e}")
            return
        except OSError as e:
            logger.warning(f"Error loading config file {path}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Config file {path} must contain a JSON object")
            return

        for name, value in data.items():
            if name not in SETTINGS:
                logger.debug(f"Ignoring unknown setting {name!r} in {path}")
                continue
            self._apply_leniently(name, value, source=str(path))
        logger.info(f"Loaded configuration from {path}")

    def load_from_env(self) -> None:
        for name in SETTINGS:
            env_var = ENV_PREFIX + name.upper()
            value = os.getenv(env_var)
            if value is not None:
                self._apply_leniently(name, value, source=env_var)

    def merge(self, **overrides) -> None:
        """Apply explicit overrides; None values are skipped.

        Raises:
            InvalidArgumentError: On an unknown name or an invalid value
        """
        for name, value in overrides.items():
            if value is None:
                continue
            if name not in SETTINGS:
                raise InvalidArgumentError(f"Unknown setting: {name}")
            self._apply(name, value)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in SETTINGS}

    def _apply(self, name: str, value: Any) -> None:
        setting = SETTINGS[name]
        try:
            converted = setting.convert(value)
        except (TypeError, ValueError):
            converted = None
        if converted is None or not setting.check(converted):
            raise InvalidArgumentError(
                f"Invalid value for {name}: {value!r}", details={"expected": setting.description}
            )
        setattr(self, name, converted)
        logger.debug(f"Set {name}={converted}")

    def _apply_leniently(self, name: str, value: Any, source: str) -> None:
        try:
            self._apply(name, value)
        except InvalidArgumentError as e:
            logger.warning(f"Ignoring {source}: {e}")

    def __repr__(self) -> str:
        return f"Configuration({self.to_dict()})"
