"""Per-user directories for moltcore.

Data, config, cache and log locations follow the platform conventions from
platformdirs. Setting ``MOLTCORE_TEST_HOME`` moves every directory under that
root, which keeps test runs away from the real user profile.
"""

import os
from pathlib import Path

from platformdirs import user_cache_dir, user_config_dir, user_data_dir

APP_NAME = "moltcore"


class GlobalPath:
    """Global path lookup for moltcore directories."""

    @classmethod
    def home(cls) -> str:
        """User home directory, overridable for tests."""
        return os.environ.get("MOLTCORE_TEST_HOME", str(Path.home()))

    @classmethod
    def _override(cls, kind: str) -> str | None:
        root = os.environ.get("MOLTCORE_TEST_HOME")
        if not root:
            return None
        return str(Path(root) / f".{APP_NAME}" / kind)

    @classmethod
    def data(cls) -> str:
        """Application data directory."""
        return cls._override("data") or user_data_dir(APP_NAME)

    @classmethod
    def config(cls) -> str:
        """Configuration directory."""
        return cls._override("config") or user_config_dir(APP_NAME)

    @classmethod
    def cache(cls) -> str:
        """Cache directory."""
        return cls._override("cache") or user_cache_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        """Log file directory."""
        return str(Path(cls.data()) / "log")

    @classmethod
    def storage(cls) -> str:
        """Root of the JSON record store."""
        return str(Path(cls.data()) / "storage")

    @classmethod
    def tool_output(cls) -> str:
        """Directory holding full copies of truncated tool output."""
        return str(Path(cls.data()) / "tool-output")

    @classmethod
    def ensure(cls) -> None:
        """Create the directories moltcore writes into."""
        for path in (cls.data(), cls.config(), cls.log()):
            Path(path).mkdir(parents=True, exist_ok=True)
