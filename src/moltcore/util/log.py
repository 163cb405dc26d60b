"""Structured logging with tagged loggers and rotated log files.

Loggers are cheap objects carrying a tag dictionary. Output goes to stderr,
to a log file under ``GlobalPath.log()``, or both, in one of three formats:
``kv`` (default), ``json`` or ``pretty``.
"""

import json
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from ..core.global_paths import GlobalPath

KEEP_LOG_FILES = 10


class LogLevel(str, Enum):
    """Log severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str | None) -> "LogLevel":
        if value is None:
            return cls.INFO
        text = value.strip().upper()
        if text == "WARNING":
            text = "WARN"
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"invalid log level: {value}") from None


class LogFormat(str, Enum):
    """Log output format."""

    KV = "kv"
    JSON = "json"
    PRETTY = "pretty"

    @classmethod
    def parse(cls, value: str | None) -> "LogFormat":
        if value is None:
            return cls.KV
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"invalid log format: {value}") from None


LEVEL_PRIORITY = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}


@dataclass
class LogConfig:
    """Process-wide sink configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.KV
    console: bool = False
    file: bool = False
    log_file_path: Optional[str] = None
    stream: Optional[TextIO] = None
    _file_handle: Optional[TextIO] = None


_config = LogConfig()
_last_timestamp = time.time()


@dataclass
class LogTimer:
    """Context manager that logs the duration of an operation."""

    logger: "Logger"
    message: str
    extra: Dict[str, Any]
    start_time: float = field(default_factory=time.time)

    def stop(self) -> None:
        duration_ms = int((time.time() - self.start_time) * 1000)
        self.logger.info(self.message, {**self.extra, "status": "completed", "duration": duration_ms})

    def __enter__(self) -> "LogTimer":
        return self

    def __exit__(self, *args) -> None:
        self.stop()


class Logger:
    """Structured logger bound to a set of tags."""

    def __init__(self, tags: Optional[Dict[str, Any]] = None):
        self.tags = tags or {}

    def _enabled(self, level: LogLevel) -> bool:
        return LEVEL_PRIORITY[level] >= LEVEL_PRIORITY[_config.level]

    def _format_exception(self, error: BaseException, depth: int = 0) -> str:
        result = str(error) or error.__class__.__name__
        if error.__cause__ and depth < 10:
            result += " Caused by: " + self._format_exception(error.__cause__, depth + 1)
        return result

    def _normalize(self, value: Any) -> Any:
        if isinstance(value, BaseException):
            return self._format_exception(value)
        if value is None or isinstance(value, (dict, list, tuple, int, float, bool)):
            return value
        return str(value)

    def _value(self, value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
        text = str(value)
        if text == "" or any(ch.isspace() for ch in text) or "=" in text:
            return json.dumps(text, ensure_ascii=False)
        return text

    def _payload(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        global _last_timestamp

        now = time.time()
        delta_ms = int((now - _last_timestamp) * 1000)
        _last_timestamp = now

        merged = {**self.tags, **(extra or {})}
        return {
            "time": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "delta_ms": delta_ms,
            "level": level.value.lower(),
            "msg": self._normalize(message),
            **{k: self._normalize(v) for k, v in merged.items() if v is not None},
        }

    def _render(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> str:
        payload = self._payload(level, message, extra)
        if _config.format == LogFormat.JSON:
            return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n"

        pairs = " ".join(
            f"{k}={self._value(v)}"
            for k, v in payload.items()
            if k not in {"time", "delta_ms", "level", "msg"}
        )
        if _config.format == LogFormat.PRETTY:
            text = str(payload.get("msg") or "")
            suffix = f" ({pairs})" if pairs else ""
            return f"{payload['time']} {level.value} {text}{suffix} +{payload['delta_ms']}ms\n"

        head = [
            str(payload["time"]),
            f"+{payload['delta_ms']}ms",
            f"level={payload['level']}",
            f"msg={self._value(payload.get('msg'))}",
        ]
        return " ".join(head + ([pairs] if pairs else [])) + "\n"

    def _write(self, line: str) -> None:
        if _config.stream is not None:
            _config.stream.write(line)
        elif _config.console:
            sys.stderr.write(line)
            sys.stderr.flush()
        if _config.file and _config._file_handle:
            _config._file_handle.write(line)
            _config._file_handle.flush()

    def _log(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> None:
        if self._enabled(level):
            self._write(self._render(level, message, extra))

    def debug(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.DEBUG, message, extra)

    def info(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.INFO, message, extra)

    def warn(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.WARN, message, extra)

    def warning(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self.warn(message, extra)

    def error(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.ERROR, message, extra)

    def tag(self, key: str, value: Any) -> "Logger":
        self.tags[key] = value
        return self

    def clone(self) -> "Logger":
        return Logger(tags=self.tags.copy())

    def time(self, message: str, extra: Optional[Dict[str, Any]] = None) -> LogTimer:
        """Log ``started`` now and ``completed`` with a duration on exit."""
        extra = extra or {}
        self.info(message, {**extra, "status": "started"})
        return LogTimer(logger=self, message=message, extra=extra)


class Log:
    """Logger factory and global sink configuration."""

    _loggers: Dict[str, Logger] = {}

    @classmethod
    def create(cls, tags: Optional[Dict[str, Any]] = None) -> Logger:
        """Create a logger. Loggers with a ``service`` tag are cached by service name."""
        tags = tags or {}
        service = tags.get("service")
        if isinstance(service, str) and service:
            logger = cls._loggers.get(service)
            if logger is None:
                logger = Logger(tags=dict(tags))
                cls._loggers[service] = logger
            return logger
        return Logger(tags=dict(tags))

    @classmethod
    def configure(
        cls,
        *,
        level: LogLevel | None = None,
        format: LogFormat | None = None,
        console: bool | None = None,
        file: bool | None = None,
        directory: str | None = None,
        dev: bool = False,
        stream: Optional[TextIO] = None,
    ) -> None:
        """Configure log level, format and sinks.

        Args:
            level: Minimum level written.
            format: Output format.
            console: Write to stderr.
            file: Write to a log file. A timestamped file is created unless ``dev``
                is set, in which case ``dev.log`` is overwritten.
            directory: Log directory, defaults to ``GlobalPath.log()``.
            stream: Explicit text sink replacing stderr, mostly for tests.
        """
        if level is not None:
            _config.level = level
        if format is not None:
            _config.format = format
        if console is not None:
            _config.console = console
        if file is not None:
            _config.file = file
        _config.stream = stream

        cls.close()
        if not _config.file:
            _config.log_file_path = None
            return

        log_dir = Path(directory or GlobalPath.log())
        log_dir.mkdir(parents=True, exist_ok=True)
        cls._cleanup_logs(log_dir)
        if dev:
            log_path = log_dir / "dev.log"
        else:
            stamp = datetime.now().isoformat().split(".")[0].replace(":", "")
            log_path = log_dir / f"{stamp}.log"

        _config.log_file_path = str(log_path)
        _config._file_handle = log_path.open("w", encoding="utf-8")

    @classmethod
    def file(cls) -> str:
        """Current log file path, or an empty string."""
        return _config.log_file_path or ""

    @classmethod
    def level(cls) -> LogLevel:
        return _config.level

    @classmethod
    def _cleanup_logs(cls, log_dir: Path) -> None:
        """Keep only the most recent timestamped log files."""
        if not log_dir.exists():
            return
        log_files = sorted(log_dir.glob("????-??-??T??????.log"), key=lambda p: p.stat().st_mtime)
        for old_file in log_files[: max(0, len(log_files) - (KEEP_LOG_FILES - 1))]:
            old_file.unlink(missing_ok=True)

    @classmethod
    def close(cls) -> None:
        """Close the log file handle if one is open."""
        if _config._file_handle:
            _config._file_handle.close()
            _config._file_handle = None

    @classmethod
    def reset(cls) -> None:
        """Restore default sinks."""
        cls.close()
        _config.level = LogLevel.INFO
        _config.format = LogFormat.KV
        _config.console = False
        _config.file = False
        _config.stream = None
        _config.log_file_path = None
