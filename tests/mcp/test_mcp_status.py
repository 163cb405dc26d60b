import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Dict, List

import pytest

from moltcore.core.bus import Bus
from moltcore.core.config_schema import McpServerConfig
from moltcore.mcp import McpToolsChanged
from moltcore.mcp.mcp import MCP, MCPToolDefinition, McpTool, McpToolError
from moltcore.tool import ToolContext, ToolValidationError


class FakeClient:
    """Stands in for a server connection."""

    def __init__(self, name: str, config: McpServerConfig, on_tools_changed: Callable[[str], Any]) -> None:
        self.name = name
        self.config = config
        self.on_tools_changed = on_tools_changed
        self.closed = False
        self.fail_listing = False
        self.results: Dict[str, Any] = {}

    async def connect(self) -> None:
        if self.config.command == "broken":
            raise ConnectionError("server exited with status 1")
        if self.config.command == "slow":
            await asyncio.sleep(10)

    async def list_tools(self) -> List[MCPToolDefinition]:
        if self.fail_listing:
            raise RuntimeError("listing failed")
        return [
            MCPToolDefinition(
                name="search.docs",
                description="Search the docs",
                input_schema={"type": "object", "properties": {"query": {"type": "string"}}},
            )
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        return self.results[name]

    async def close(self) -> None:
        self.closed = True


def _manager(bus: Bus, created: List[FakeClient]) -> MCP:
    def factory(name: str, config: McpServerConfig, on_changed: Callable[[str], Any]) -> FakeClient:
        client = FakeClient(name, config, on_changed)
        created.append(client)
        return client

    return MCP(bus, client_factory=factory)  # type: ignore[arg-type]


def _config(**servers: Dict[str, Any]) -> Dict[str, McpServerConfig]:
    return {name: McpServerConfig.model_validate(cfg) for name, cfg in servers.items()}


@pytest.mark.anyio
async def test_failing_server_does_not_affect_others() -> None:
    bus = Bus()
    changed: list[str] = []
    bus.subscribe(McpToolsChanged, lambda p: changed.append(p.properties["server"]))
    created: list[FakeClient] = []
    mcp = _manager(bus, created)

    await mcp.init(_config(
        docs={"command": "docs-server"},
        broken={"command": "broken"},
        off={"command": "docs-server", "enabled": False},
        slow={"command": "slow", "timeout": 0.05},
    ))

    status = mcp.status()
    assert status["docs"].status == "connected"
    assert status["broken"].status == "failed"
    assert status["broken"].error == "server exited with status 1"
    assert status["off"].status == "disabled"
    assert status["slow"].status == "failed"
    assert status["slow"].error == "Connection timeout"
    assert changed == ["docs"]
    assert set(mcp.clients()) == {"docs"}


@pytest.mark.anyio
async def test_tools_are_prefixed_and_callable() -> None:
    created: list[FakeClient] = []
    mcp = _manager(Bus(), created)
    await mcp.init(_config(docs={"command": "docs-server"}))

    tools = await mcp.tools()
    assert [t.id for t in tools] == ["docs_search_docs"]
    tool = tools[0]
    assert tool.describe()["function"]["parameters"]["additionalProperties"] is False

    ctx = ToolContext(session_id="ses_1", message_id="msg_1", agent="build")
    created[0].results["search.docs"] = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="found it")],
        isError=False,
    )
    result = await tool.execute({"query": "bus"}, ctx)
    assert result.output == "found it"
    assert result.metadata == {"server": "docs"}

    created[0].results["search.docs"] = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="index offline")],
        isError=True,
    )
    with pytest.raises(McpToolError):
        await tool.execute({"query": "bus"}, ctx)


@pytest.mark.anyio
async def test_listing_failure_marks_server_failed() -> None:
    created: list[FakeClient] = []
    mcp = _manager(Bus(), created)
    await mcp.init(_config(docs={"command": "docs-server"}))
    created[0].fail_listing = True

    assert await mcp.tools() == []
    assert mcp.status()["docs"].status == "failed"
    assert created[0].closed is True


@pytest.mark.anyio
async def test_reconnect_disconnect_and_cleanup() -> None:
    created: list[FakeClient] = []
    mcp = _manager(Bus(), created)
    await mcp.init(_config(docs={"command": "docs-server"}, other={"command": "docs-server"}))

    status = await mcp.reconnect("docs")
    assert status.status == "connected"
    assert created[0].closed is True
    assert len(created) == 3

    await mcp.disconnect("other")
    assert mcp.status()["other"].status == "disabled"
    with pytest.raises(ValueError):
        await mcp.disconnect("unknown")

    await mcp.cleanup()
    assert all(c.closed for c in created)
    assert mcp.clients() == {}


def test_tool_arguments_are_checked_against_input_schema() -> None:
    definition = MCPToolDefinition(
        name="lookup",
        input_schema={
            "type": "object",
            "properties": {"query": {"type": "string"}, "limit": {"type": "integer"}},
            "required": ["query"],
        },
    )
    tool = McpTool("docs", definition, client=None)  # type: ignore[arg-type]

    assert tool.parse({"query": "bus", "limit": 3}) == {"query": "bus", "limit": 3}

    with pytest.raises(ToolValidationError) as missing:
        tool.parse({"limit": 3})
    assert "The docs_lookup tool was called with invalid arguments" in str(missing.value)
    assert "'query' is a required property" in str(missing.value)

    with pytest.raises(ToolValidationError) as wrong_type:
        tool.parse({"query": "bus", "limit": "many"})
    assert "limit: 'many' is not of type 'integer'" in str(wrong_type.value)

    with pytest.raises(ToolValidationError) as not_object:
        tool.parse("not-an-object")
    assert "expected a JSON object, got str" in str(not_object.value)
