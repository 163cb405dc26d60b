"""Runtime logging bootstrap helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ..core.config_schema import Config
from ..util.log import Log, LogFormat, LogLevel

ENV_PREFIX = "MOLTCORE_LOG_"


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    file: bool
    dev_file: bool


def _flag(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def resolve_settings(config: Config, env: Optional[Mapping[str, str]] = None) -> LogSettings:
    """Combine ``MOLTCORE_LOG_*`` variables with ``config.logging``.

    Environment variables win over config. Console logging is off and file
    logging is on unless either source says otherwise.
    """
    env = os.environ if env is None else env
    cfg = config.logging

    level = LogLevel.parse(env.get(ENV_PREFIX + "LEVEL") or (cfg.level if cfg else None))
    fmt = LogFormat.parse(env.get(ENV_PREFIX + "FORMAT") or (cfg.format if cfg else None))

    console = _flag(env.get(ENV_PREFIX + "CONSOLE"))
    if console is None:
        console = cfg.console if cfg and cfg.console is not None else False

    use_file = _flag(env.get(ENV_PREFIX + "FILE"))
    if use_file is None:
        use_file = cfg.file if cfg and cfg.file is not None else True

    dev_file = _flag(env.get(ENV_PREFIX + "DEV_FILE"))
    if dev_file is None:
        dev_file = cfg.dev_file if cfg and cfg.dev_file is not None else False

    return LogSettings(level=level, format=fmt, console=console, file=use_file, dev_file=dev_file)


def configure_logging(config: Config, env: Optional[Mapping[str, str]] = None) -> LogSettings:
    """Resolve settings and initialize the process logger."""
    settings = resolve_settings(config, env)
    Log.configure(
        level=settings.level,
        format=settings.format,
        console=settings.console,
        file=settings.file,
        dev=settings.dev_file,
    )
    return settings
