"""Configuration management.

Sources, lowest precedence first:

1. Global config (``config.json``, ``moltcore.json``, ``moltcore.jsonc`` in
   ``GlobalPath.config()``)
2. Project files (``moltcore.json``/``moltcore.jsonc``) found walking up from
   the working directory, outermost first
3. ``MOLTCORE_CONFIG_CONTENT`` environment variable
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config_loader import deep_merge, load_json_file, parse_config_text
from .config_schema import (
    AgentConfig,
    AuthConfig,
    Config,
    CustomModelConfig,
    LoggingConfig,
    McpServerConfig,
    ProviderConfig,
    SessionConfig,
    ToolOutputConfig,
)
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

CONFIG_FILENAMES = ("moltcore.json", "moltcore.jsonc")
ENV_CONTENT = "MOLTCORE_CONFIG_CONTENT"

__all__ = [
    "AgentConfig",
    "AuthConfig",
    "Config",
    "ConfigError",
    "ConfigManager",
    "CustomModelConfig",
    "LoggingConfig",
    "McpServerConfig",
    "ProviderConfig",
    "SessionConfig",
    "ToolOutputConfig",
]


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


class ConfigManager:
    """Loads and caches the merged configuration for one working directory."""

    def __init__(self, directory: str = ".", *, global_dir: Optional[str] = None) -> None:
        self.directory = directory
        self._global_dir = global_dir
        self._cache: Optional[Config] = None
        self._sources: List[str] = []

    def reset(self) -> None:
        self._cache = None
        self._sources = []

    def sources(self) -> List[str]:
        """Files (and env vars) that contributed to the cached config."""
        return self._sources.copy()

    async def get(self) -> Config:
        if self._cache is None:
            return await self.load()
        return self._cache

    async def load(self) -> Config:
        if self._cache is not None:
            return self._cache

        result: Dict[str, Any] = {}
        sources: List[str] = []

        global_dir = self._global_dir or GlobalPath.config()
        for filename in ("config.json", *CONFIG_FILENAMES):
            filepath = os.path.join(global_dir, filename)
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(filepath)
                log.info("loaded global config", {"path": filepath})

        project_files: List[str] = []
        current = Path(self.directory).resolve()
        while True:
            for filename in CONFIG_FILENAMES:
                candidate = current / filename
                if candidate.is_file():
                    project_files.append(str(candidate))
            if current == current.parent:
                break
            current = current.parent

        for filepath in reversed(project_files):
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(filepath)
                log.info("loaded project config", {"path": filepath})

        content = os.environ.get(ENV_CONTENT)
        if content:
            try:
                result = deep_merge(result, parse_config_text(content))
                sources.append(ENV_CONTENT)
                log.info("loaded config from environment", {"var": ENV_CONTENT})
            except ValueError as e:
                log.error("failed to parse config from environment", {"var": ENV_CONTENT, "error": str(e)})

        try:
            config = Config.model_validate(result)
        except ValidationError as e:
            raise ConfigError(sources[-1] if sources else "<defaults>", str(e)) from e

        self._sources = sources
        self._cache = config
        return config

    def provide(self, config: Config) -> None:
        """Install an already built config, bypassing file discovery."""
        self._cache = config
        self._sources = ["<provided>"]
