"""MCP (Model Context Protocol) client manager.

Connects to configured external tool servers and adapts their tools to the
local tool contract. Each server connection is owned by one background task
which enters and exits the transport contexts, since the anyio-based
transports must be closed from the task that opened them.
"""

import asyncio
import os
import re
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, List, Literal, Optional, Union

import httpx
from jsonschema import Draft202012Validator
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamable_http_client
from pydantic import BaseModel

from ..core.bus import Bus
from ..core.config_schema import McpServerConfig
from ..tool.tool import ToolContext, ToolInfo, ToolResult, ToolValidationError
from ..util.log import Log
from .events import McpToolsChanged, McpToolsChangedProps

log = Log.create({"service": "mcp"})

DEFAULT_TIMEOUT = 30.0
CALL_TIMEOUT = 30.0
CLOSE_TIMEOUT = 5.0


class MCPStatusConnected(BaseModel):
    status: Literal["connected"] = "connected"


class MCPStatusDisabled(BaseModel):
    status: Literal["disabled"] = "disabled"


class MCPStatusFailed(BaseModel):
    status: Literal["failed"] = "failed"
    error: str


MCPStatus = Union[MCPStatusConnected, MCPStatusDisabled, MCPStatusFailed]


class MCPToolDefinition(BaseModel):
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = {}


class McpToolError(RuntimeError):
    """An MCP server reported a failed tool call."""


def _sanitize_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name)


def _content_text(content: List[Any]) -> str:
    parts = []
    for item in content:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif getattr(item, "type", None) == "resource":
            resource = getattr(item, "resource", None)
            parts.append(getattr(resource, "text", None) or f"[resource {getattr(resource, 'uri', '')}]")
        else:
            parts.append(f"[{getattr(item, 'type', 'content')}]")
    return "\n".join(parts)


class MCPClient:
    """A connection to one MCP server."""

    def __init__(
        self,
        name: str,
        config: McpServerConfig,
        on_tools_changed: Optional[Callable[[str], Any]] = None,
    ):
        self.name = name
        self.config = config
        self._on_tools_changed = on_tools_changed
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """Open the transport and initialize the protocol session.

        Raises:
            Exception: Whatever the transport or handshake raised.
        """
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._own(ready), name=f"mcp:{self.name}")
        try:
            await ready
        except BaseException:
            await self.close()
            raise

    async def _own(self, ready: "asyncio.Future[None]") -> None:
        assert self._stop is not None
        try:
            async with AsyncExitStack() as stack:
                self._session = await self._open(stack)
                if not ready.done():
                    ready.set_result(None)
                await self._stop.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                log.error("mcp transport closed with error", {"name": self.name, "error": str(e)})
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(ConnectionError("MCP transport cancelled"))

    async def _open(self, stack: AsyncExitStack) -> ClientSession:
        cfg = self.config
        if cfg.type == "stdio":
            params = StdioServerParameters(
                command=cfg.command or "",
                args=cfg.args,
                env={**os.environ, **cfg.env},
                cwd=os.getcwd(),
            )
            read, write = await stack.enter_async_context(stdio_client(params))
        elif cfg.type == "sse":
            read, write = await stack.enter_async_context(sse_client(cfg.url or "", headers=cfg.headers or None))
        else:
            http_client = await stack.enter_async_context(httpx.AsyncClient(headers=cfg.headers or None))
            read, write, _ = await stack.enter_async_context(
                streamable_http_client(cfg.url or "", http_client=http_client)
            )
        session = await stack.enter_async_context(
            ClientSession(read, write, message_handler=self._on_message)
        )
        await session.initialize()
        return session

    async def _on_message(self, message: Any) -> None:
        if isinstance(message, types.ServerNotification) and isinstance(
            message.root, types.ToolListChangedNotification
        ):
            log.info("tool list changed", {"name": self.name})
            if self._on_tools_changed is not None:
                result = self._on_tools_changed(self.name)
                if asyncio.iscoroutine(result):
                    await result

    async def list_tools(self) -> List[MCPToolDefinition]:
        if not self._session:
            return []
        result = await self._session.list_tools()
        return [
            MCPToolDefinition(
                name=t.name,
                description=t.description or "",
                input_schema=t.inputSchema if isinstance(t.inputSchema, dict) else {},
            )
            for t in result.tools
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        if not self._session:
            raise RuntimeError(f"MCPClient '{self.name}' is not connected")
        return await self._session.call_tool(name, arguments)

    async def list_prompts(self) -> List[Dict[str, Any]]:
        if not self._session:
            return []
        result = await self._session.list_prompts()
        return [
            {
                "name": p.name,
                "description": p.description or "",
                "arguments": [
                    {"name": a.name, "description": a.description, "required": bool(a.required)}
                    for a in (p.arguments or [])
                ],
            }
            for p in result.prompts
        ]

    async def list_resources(self) -> List[Dict[str, Any]]:
        if not self._session:
            return []
        result = await self._session.list_resources()
        return [
            {"name": r.name, "uri": str(r.uri), "description": r.description, "mimeType": r.mimeType}
            for r in result.resources
        ]

    async def close(self) -> None:
        """Stop the owner task and wait for the transport to close."""
        task, self._task = self._task, None
        if self._stop is not None:
            self._stop.set()
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class McpTool(ToolInfo):
    """A tool served by an MCP server, exposed through the local tool contract."""

    auto_truncate = True

    def __init__(self, server: str, definition: MCPToolDefinition, client: MCPClient, timeout: float = CALL_TIMEOUT):
        self.server = server
        self.name = definition.name
        self.id = f"{_sanitize_name(server)}_{_sanitize_name(definition.name)}"
        self.description = definition.description
        self.input_schema = definition.input_schema
        self._validator = Draft202012Validator(self.input_schema)
        self.client = client
        self.timeout = timeout

    def schema(self) -> Dict[str, Any]:
        schema = dict(self.input_schema)
        schema["type"] = "object"
        schema.setdefault("properties", {})
        schema["additionalProperties"] = False
        return schema

    def parse(self, args: Any) -> Dict[str, Any]:
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise ToolValidationError(self.id, f"expected a JSON object, got {type(args).__name__}")
        errors = sorted(self._validator.iter_errors(args), key=lambda e: [str(p) for p in e.path])
        if errors:
            detail = "; ".join(f"{'/'.join(str(p) for p in e.path) or '$'}: {e.message}" for e in errors)
            raise ToolValidationError(self.id, detail)
        return dict(args)

    async def execute(self, args: Dict[str, Any], ctx: ToolContext) -> ToolResult:
        result = await asyncio.wait_for(self.client.call_tool(self.name, args), timeout=self.timeout)
        output = _content_text(getattr(result, "content", None) or [])
        if getattr(result, "isError", False):
            raise McpToolError(output or f"MCP tool {self.name} failed")
        return ToolResult(title=self.name, output=output, metadata={"server": self.server})


ClientFactory = Callable[[str, McpServerConfig, Callable[[str], Any]], MCPClient]


class MCP:
    """Owns every configured MCP server connection."""

    def __init__(self, bus: Bus, *, client_factory: Optional[ClientFactory] = None) -> None:
        self._bus = bus
        self._client_factory: ClientFactory = client_factory or MCPClient
        self._config: Dict[str, McpServerConfig] = {}
        self._clients: Dict[str, MCPClient] = {}
        self._status: Dict[str, MCPStatus] = {}
        self._lock = asyncio.Lock()

    async def init(self, config: Dict[str, McpServerConfig]) -> None:
        """Connect every enabled server in parallel.

        A failing server is recorded as ``failed`` and does not affect the
        others.
        """
        self._config = dict(config)
        names = []
        for name, cfg in self._config.items():
            if cfg.enabled is False:
                self._status[name] = MCPStatusDisabled()
                continue
            names.append(name)
        await asyncio.gather(*(self._connect(name, self._config[name]) for name in names))

    async def _tools_changed(self, server: str) -> None:
        await self._bus.publish(McpToolsChanged, McpToolsChangedProps(server=server))

    async def _connect(self, name: str, cfg: McpServerConfig) -> None:
        client = self._client_factory(name, cfg, self._tools_changed)
        timeout = cfg.timeout or DEFAULT_TIMEOUT
        try:
            async with asyncio.timeout(timeout):
                await client.connect()
        except TimeoutError:
            log.error("mcp connect timed out", {"name": name, "timeout": timeout})
            self._status[name] = MCPStatusFailed(error="Connection timeout")
            return
        except Exception as e:
            log.error("mcp connect failed", {"name": name, "error": str(e)})
            self._status[name] = MCPStatusFailed(error=str(e) or type(e).__name__)
            return

        async with self._lock:
            previous = self._clients.pop(name, None)
            self._clients[name] = client
            self._status[name] = MCPStatusConnected()
        if previous is not None:
            await self._close(name, previous)
        log.info("connected", {"name": name, "type": cfg.type})
        await self._tools_changed(name)

    async def _close(self, name: str, client: MCPClient) -> None:
        try:
            await client.close()
        except Exception as e:
            log.error("failed to close mcp client", {"name": name, "error": str(e)})

    def status(self) -> Dict[str, MCPStatus]:
        return {name: self._status.get(name, MCPStatusDisabled()) for name in self._config}

    def clients(self) -> Dict[str, MCPClient]:
        return dict(self._clients)

    async def tools(self) -> List[McpTool]:
        """Tools from every connected server.

        A server whose listing fails is marked ``failed`` and dropped.
        """
        result: List[McpTool] = []
        for name, client in list(self._clients.items()):
            cfg = self._config.get(name)
            timeout = (cfg.timeout if cfg else None) or CALL_TIMEOUT
            try:
                definitions = await asyncio.wait_for(client.list_tools(), timeout=timeout)
            except Exception as e:
                log.error("failed to list tools", {"name": name, "error": str(e)})
                self._status[name] = MCPStatusFailed(error=str(e) or type(e).__name__)
                self._clients.pop(name, None)
                await self._close(name, client)
                continue
            result.extend(McpTool(name, definition, client, timeout) for definition in definitions)
        return result

    async def list_prompts(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {}
        for name, client in list(self._clients.items()):
            try:
                prompts = await client.list_prompts()
            except Exception as e:
                log.error("failed to list prompts", {"name": name, "error": str(e)})
                continue
            for prompt in prompts:
                result[f"{_sanitize_name(name)}:{_sanitize_name(prompt['name'])}"] = {**prompt, "client": name}
        return result

    async def list_resources(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {}
        for name, client in list(self._clients.items()):
            try:
                resources = await client.list_resources()
            except Exception as e:
                log.error("failed to list resources", {"name": name, "error": str(e)})
                continue
            for resource in resources:
                result[f"{_sanitize_name(name)}:{_sanitize_name(resource['name'])}"] = {**resource, "client": name}
        return result

    async def disconnect(self, name: str) -> None:
        if name not in self._config:
            raise ValueError(f"MCP server not found: {name}")
        client = self._clients.pop(name, None)
        self._status[name] = MCPStatusDisabled()
        if client is not None:
            await self._close(name, client)
            await self._tools_changed(name)

    async def reconnect(self, name: str) -> MCPStatus:
        """Drop any existing connection to ``name`` and connect again."""
        cfg = self._config.get(name)
        if cfg is None:
            raise ValueError(f"MCP server not found: {name}")
        client = self._clients.pop(name, None)
        if client is not None:
            await self._close(name, client)
        await self._connect(name, cfg)
        return self._status[name]

    async def cleanup(self) -> None:
        """Close every client. Close errors are logged, never raised."""
        clients, self._clients = self._clients, {}
        results = await asyncio.gather(*(c.close() for c in clients.values()), return_exceptions=True)
        for name, result in zip(clients, results):
            if isinstance(result, BaseException):
                log.error("failed to close mcp client", {"name": name, "error": str(result)})
