"""Application runtime service container."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Mapping, Optional

from ..agent import AgentRegistry
from ..core.bus import Bus
from ..core.config import ConfigManager
from ..core.config_schema import Config
from ..mcp.mcp import MCP, ClientFactory as McpClientFactory
from ..permission import Permission
from ..provider import AuthProfileStore, Provider
from ..provider.provider import ClientFactory
from ..session import Session
from ..storage import Storage
from ..tool import ToolRegistry, Truncate
from ..tool.truncation import DAY_MS
from ..util.log import Log
from .logging import configure_logging

log = Log.create({"service": "runtime"})


class AppRuntime:
    """Container for process-level service instances.

    Every stateful component is constructed here once and handed to the
    components that depend on it. Nothing is looked up through globals.
    """

    __slots__ = (
        "directory",
        "env",
        "bus",
        "config_manager",
        "config",
        "storage",
        "permission",
        "truncate",
        "auth",
        "provider",
        "mcp",
        "tools",
        "agents",
        "sessions",
        "started",
    )

    def __init__(
        self,
        directory: str = ".",
        *,
        config: Optional[Config] = None,
        global_config_dir: Optional[str] = None,
        storage_root: Optional[Path] = None,
        auth_path: Optional[Path] = None,
        client_factories: Optional[Dict[str, ClientFactory]] = None,
        mcp_client_factory: Optional[McpClientFactory] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.directory = str(Path(directory).resolve())
        self.env = env
        self.bus = Bus()
        self.config_manager = ConfigManager(self.directory, global_dir=global_config_dir)
        if config is not None:
            self.config_manager.provide(config)
        self.config = config or Config()

        self.storage = Storage(storage_root)
        self.permission = Permission(self.bus)
        self.truncate = Truncate()
        self.auth = AuthProfileStore(auth_path)
        self.provider = Provider(auth=self.auth, client_factories=client_factories)
        self.mcp = MCP(self.bus, client_factory=mcp_client_factory)
        self.tools = ToolRegistry(truncate=self.truncate, bus=self.bus, mcp=self.mcp)
        self.agents = AgentRegistry(self.config)
        self.sessions = Session(
            bus=self.bus,
            storage=self.storage,
            provider=self.provider,
            registry=self.tools,
            permission=self.permission,
            agents=self.agents,
            auth=self.auth,
            config=self.config,
            directory=self.directory,
        )
        self.started = False

    def apply_config(self, config: Config) -> None:
        """Push a loaded config into the components that read it."""
        self.config = config
        self.auth.cooldown_ms = config.auth.cooldown_ms
        self.truncate.max_lines = config.tool_output.max_lines
        self.truncate.max_bytes = config.tool_output.max_bytes
        self.truncate.retention_ms = config.tool_output.retention_days * DAY_MS
        self.agents.load(config)
        self.sessions.config = config

    async def start(self) -> None:
        """Load config and bring up providers, MCP servers and cleanup.

        Raises:
            ConfigError: A config file is invalid.
        """
        if self.started:
            return
        config = await self.config_manager.get()
        self.apply_config(config)
        configure_logging(config, self.env)

        await self.provider.init(config, self.env)
        await self.mcp.init(config.mcp)
        self.truncate.start_cleanup()
        self.started = True
        log.info("runtime started", {
            "directory": self.directory,
            "providers": list(self.provider.list()),
            "mcp": list(config.mcp),
        })

    async def shutdown(self) -> None:
        """Abort running turns and release every resource.

        Steps run independently, so one failing step does not leave the
        others undone.
        """
        self.sessions.abort_all()
        results = await asyncio.gather(
            self.permission.shutdown(),
            self.mcp.cleanup(),
            self.truncate.stop_cleanup(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                log.error("shutdown step failed", {"error": result})
        self.tools.close()
        self.started = False
        log.info("runtime stopped")

    async def __aenter__(self) -> "AppRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()
