from __future__ import annotations

from moltcore.core.config_schema import Config, LoggingConfig
from moltcore.runtime import configure_logging, resolve_settings
from moltcore.util.log import Log, LogFormat, LogLevel


def test_defaults_log_to_file_only() -> None:
    settings = resolve_settings(Config(), env={})

    assert settings.level is LogLevel.INFO
    assert settings.format is LogFormat.KV
    assert settings.console is False
    assert settings.file is True
    assert settings.dev_file is False


def test_logging_config_is_used() -> None:
    config = Config(logging=LoggingConfig(level="debug", format="json", console=True, file=False, dev_file=True))

    settings = resolve_settings(config, env={})

    assert settings.level is LogLevel.DEBUG
    assert settings.format is LogFormat.JSON
    assert settings.console is True
    assert settings.file is False
    assert settings.dev_file is True


def test_environment_wins_over_config() -> None:
    config = Config(logging=LoggingConfig(level="debug", console=True, file=True))
    env = {
        "MOLTCORE_LOG_LEVEL": "error",
        "MOLTCORE_LOG_FORMAT": "pretty",
        "MOLTCORE_LOG_CONSOLE": "0",
        "MOLTCORE_LOG_FILE": "false",
    }

    settings = resolve_settings(config, env=env)

    assert settings.level is LogLevel.ERROR
    assert settings.format is LogFormat.PRETTY
    assert settings.console is False
    assert settings.file is False


def test_configure_logging_applies_settings(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    seen: dict[str, object] = {}

    def fake_configure(cls, **kwargs) -> None:  # type: ignore[no-untyped-def]
        seen.update(kwargs)

    monkeypatch.setattr("moltcore.runtime.logging.Log.configure", classmethod(fake_configure))

    configure_logging(Config(), env={"MOLTCORE_LOG_DEV_FILE": "yes"})

    assert seen == {
        "level": LogLevel.INFO,
        "format": LogFormat.KV,
        "console": False,
        "file": True,
        "dev": True,
    }
    assert Log.level() is LogLevel.INFO
