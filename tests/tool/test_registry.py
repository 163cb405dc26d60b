from pathlib import Path
from typing import Any, List

import pytest
from pydantic import BaseModel

from moltcore.core.bus import Bus
from moltcore.mcp import McpToolsChanged, McpToolsChangedProps
from moltcore.permission import from_config
from moltcore.tool import Tool, ToolContext, ToolRegistry, ToolResult, ToolValidationError, Truncate


class CountParams(BaseModel):
    count: int


async def _many_lines(params: CountParams, _ctx: ToolContext) -> ToolResult:
    return ToolResult(title="lines", output="\n".join(str(i) for i in range(params.count)))


def _lines_tool(tool_id: str = "lines", auto_truncate: bool = True):  # type: ignore[no-untyped-def]
    return Tool.define(
        tool_id=tool_id,
        description="Print numbered lines.",
        parameters_type=CountParams,
        execute_fn=_many_lines,
        auto_truncate=auto_truncate,
    )


def _ctx() -> ToolContext:
    return ToolContext(session_id="ses_1", message_id="msg_1", agent="build")


class FakeMCP:
    def __init__(self, tools: List[Any]) -> None:
        self.served = tools
        self.calls = 0

    async def tools(self) -> List[Any]:
        self.calls += 1
        return list(self.served)


@pytest.mark.anyio
async def test_builtins_are_registered_and_invalid_is_hidden(tmp_path: Path) -> None:
    registry = ToolRegistry(truncate=Truncate(tmp_path))

    assert set(registry.ids()) == {"bash", "read", "invalid"}
    resolved = await registry.resolve([])
    assert set(resolved) == {"bash", "read"}


@pytest.mark.anyio
async def test_resolve_drops_denied_and_switched_off_tools(tmp_path: Path) -> None:
    registry = ToolRegistry(truncate=Truncate(tmp_path), tools=[])
    registry.register(_lines_tool("a"))
    registry.register(_lines_tool("b"))
    registry.register(_lines_tool("c"))

    resolved = await registry.resolve(from_config({"a": "deny", "b": {"x*": "deny"}}), {"c": False})

    assert list(resolved) == ["b"]
    definitions = await registry.definitions([])
    assert [d["function"]["name"] for d in definitions] == ["a", "b", "c"]


@pytest.mark.anyio
async def test_execute_truncates_long_output(tmp_path: Path) -> None:
    registry = ToolRegistry(truncate=Truncate(tmp_path, max_lines=20), tools=[_lines_tool()])

    result = await registry.execute(registry.get("lines"), {"count": 500}, _ctx())

    assert result.metadata["truncated"] is True
    assert Path(result.metadata["output_path"]).exists()
    assert len(result.output.split("\n")) <= 20

    short = await registry.execute(registry.get("lines"), {"count": 3}, _ctx())
    assert short.output == "0\n1\n2"
    assert short.metadata["truncated"] is False


@pytest.mark.anyio
async def test_execute_respects_auto_truncate_opt_out(tmp_path: Path) -> None:
    tool = _lines_tool(auto_truncate=False)
    registry = ToolRegistry(truncate=Truncate(tmp_path, max_lines=20), tools=[tool])

    result = await registry.execute(tool, {"count": 500}, _ctx())

    assert len(result.output.split("\n")) == 500
    assert "truncated" not in result.metadata


@pytest.mark.anyio
async def test_execute_rejects_invalid_arguments(tmp_path: Path) -> None:
    tool = _lines_tool()
    registry = ToolRegistry(truncate=Truncate(tmp_path), tools=[tool])

    with pytest.raises(ToolValidationError):
        await registry.execute(tool, {"count": "many"}, _ctx())


@pytest.mark.anyio
async def test_mcp_tools_reload_after_change_event(tmp_path: Path) -> None:
    bus = Bus()
    mcp = FakeMCP([_lines_tool("docs_search")])
    registry = ToolRegistry(truncate=Truncate(tmp_path), bus=bus, mcp=mcp, tools=[])  # type: ignore[arg-type]

    assert list(await registry.resolve([])) == ["docs_search"]
    await registry.resolve([])
    assert mcp.calls == 1

    mcp.served.append(_lines_tool("docs_fetch"))
    await bus.publish(McpToolsChanged, McpToolsChangedProps(server="docs"))
    assert set(await registry.resolve([])) == {"docs_search", "docs_fetch"}
    assert mcp.calls == 2

    registry.close()
    assert bus.subscriber_count(McpToolsChanged) == 0
