"""Tool configuration loaded from and saved to TOML."""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional, Union

import tomli_w

from .errors import ConfigError, FileOperationError
from .files import atomic_write, ensure_dir
from .paths import CONFIG_FILE, DEFAULT_LOG_PATH

logger = logging.getLogger(__name__)

CONFIG_ENV = "SERVER_TOOLKIT_CONFIG"
CONFIG_MODE = 0o644
LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

# Settings the interactive menu can change
TOGGLES = ("dry_run", "auto_update")
SETTINGS = TOGGLES + ("log_level",)


@dataclass
class Config:
    """Settings from ``/etc/server-toolkit/config.toml``.

    Example::

        dry_run = false
        log_level = "INFO"
        log_path = "/var/log/server-toolkit.log"
        auto_update = true
        release_repo = "Akuma-real/server-toolkit"
        http_timeout = 30
    """

    dry_run: bool = False
    log_level: str = "INFO"
    log_path: str = str(DEFAULT_LOG_PATH)
    auto_update: bool = True
    release_repo: str = "Akuma-real/server-toolkit"
    http_timeout: int = 30


def config_path() -> Path:
    """The config file in use: ``$SERVER_TOOLKIT_CONFIG`` or the default."""
    return Path(os.environ.get(CONFIG_ENV) or CONFIG_FILE)


def _check_type(name: str, value, expected: type) -> None:
    # bool is an int subclass; keep them apart
    if expected is int and isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    if not isinstance(value, expected):
        raise ConfigError(f"{name} must be of type {expected.__name__}, got {type(value).__name__}")


def load_config(path: Optional[Union[str, Path]] = None) -> Config:
    """
    Load configuration from TOML.

    Args:
        path: Config file; defaults to :func:`config_path`

    Returns:
        Config with file values over defaults

    Raises:
        ConfigError: unreadable file, invalid TOML, unknown keys or wrong types
    """
    path = Path(path) if path else config_path()
    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return Config()

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    types = {f.name: f.type for f in fields(Config)}
    unknown = sorted(set(data) - set(types))
    if unknown:
        raise ConfigError(f"unknown config keys in {path}: {', '.join(unknown)}")

    for name, value in data.items():
        _check_type(name, value, types[name])
        if name == "http_timeout" and value <= 0:
            raise ConfigError("http_timeout must be positive")

    logger.debug(f"Loaded config from {path}")
    return Config(**data)


def save_config(config: Config, path: Optional[Union[str, Path]] = None) -> Path:
    """
    Write ``config`` as TOML, replacing the file atomically.

    Returns:
        The path written

    Raises:
        ConfigError: the directory or file could not be written
    """
    path = Path(path) if path else config_path()
    content = tomli_w.dumps(asdict(config))
    try:
        ensure_dir(path.parent)
        atomic_write(path, content, mode=CONFIG_MODE)
    except FileOperationError as e:
        raise ConfigError(f"cannot save {path}: {e}") from e
    logger.info(f"Saved config to {path}")
    return path


def next_log_level(level: str) -> str:
    """DEBUG -> INFO -> WARN -> ERROR -> DEBUG; unknown names restart at INFO."""
    level = level.strip().upper()
    if level == "WARNING":
        level = "WARN"
    if level not in LOG_LEVELS:
        return "INFO"
    return LOG_LEVELS[(LOG_LEVELS.index(level) + 1) % len(LOG_LEVELS)]


def cycle_setting(config: Config, name: str) -> Config:
    """
    Return a copy of ``config`` with one menu setting advanced.

    Booleans flip and ``log_level`` moves to the next level.

    Raises:
        ValueError: ``name`` is not a menu setting
    """
    if name in TOGGLES:
        return replace(config, **{name: not getattr(config, name)})
    if name == "log_level":
        return replace(config, log_level=next_log_level(config.log_level))
    raise ValueError(f"unknown setting: {name}")
