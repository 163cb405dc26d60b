"""Runtime container and logging bootstrap."""

from .app_runtime import AppRuntime
from .logging import LogSettings, configure_logging, resolve_settings

__all__ = ["AppRuntime", "LogSettings", "configure_logging", "resolve_settings"]
