"""Utility modules."""

from .abort import AbortedError, race_abort
from .error import describe_error, error_info, format_error, format_unknown_error
from .log import Log, LogFormat, LogLevel

__all__ = [
    "AbortedError",
    "race_abort",
    "Log",
    "LogFormat",
    "LogLevel",
    "describe_error",
    "error_info",
    "format_error",
    "format_unknown_error",
]
