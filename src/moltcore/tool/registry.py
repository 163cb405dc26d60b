"""Tool registry: builtin tools plus tools discovered on MCP servers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..core.bus import Bus, EventPayload
from ..mcp.events import McpToolsChanged
from ..permission.permission import Ruleset, disabled_tools
from ..util.log import Log
from .tool import ToolContext, ToolInfo, ToolResult
from .truncation import Truncate, TruncateOptions

if TYPE_CHECKING:
    from ..mcp.mcp import MCP

log = Log.create({"service": "tool.registry"})

INVALID_TOOL = "invalid"


def builtin_tools() -> List[ToolInfo]:
    from .bash import BashTool
    from .invalid import InvalidTool
    from .read import ReadTool

    return [BashTool, ReadTool, InvalidTool]


class ToolRegistry:
    """Central registry for the tools a turn may call.

    MCP tools are cached and recomputed on first use after a server reports
    that its tool list changed.
    """

    def __init__(
        self,
        *,
        truncate: Truncate,
        bus: Optional[Bus] = None,
        mcp: Optional["MCP"] = None,
        tools: Optional[Iterable[ToolInfo]] = None,
    ) -> None:
        self.truncate = truncate
        self._mcp = mcp
        self._tools: Dict[str, ToolInfo] = {}
        self._mcp_tools: Dict[str, ToolInfo] = {}
        self._mcp_stale = True
        self._unsubscribe = bus.subscribe(McpToolsChanged, self._on_mcp_changed) if bus else None

        for tool in builtin_tools() if tools is None else tools:
            self.register(tool)

    def _on_mcp_changed(self, payload: EventPayload) -> None:
        log.info("mcp tool list changed", {"server": payload.properties.get("server")})
        self._mcp_stale = True

    def invalidate(self) -> None:
        self._mcp_stale = True

    def register(self, tool: ToolInfo) -> None:
        self._tools[tool.id] = tool

    def unregister(self, tool_id: str) -> None:
        self._tools.pop(tool_id, None)

    def get(self, tool_id: str) -> Optional[ToolInfo]:
        return self._tools.get(tool_id) or self._mcp_tools.get(tool_id)

    def list(self) -> List[ToolInfo]:
        return [*self._tools.values(), *self._mcp_tools.values()]

    def ids(self) -> List[str]:
        return [tool.id for tool in self.list()]

    async def refresh(self) -> None:
        """Reload MCP tools if the cache is stale."""
        if self._mcp is None or not self._mcp_stale:
            return
        tools = await self._mcp.tools()
        self._mcp_tools = {tool.id: tool for tool in tools if tool.id not in self._tools}
        self._mcp_stale = False
        log.info("loaded mcp tools", {"count": len(self._mcp_tools)})

    async def resolve(
        self,
        ruleset: Ruleset,
        overrides: Optional[Dict[str, bool]] = None,
    ) -> Dict[str, ToolInfo]:
        """Tools offered to the model for one turn.

        Tools blanket-denied by ``ruleset`` or switched off in ``overrides`` are
        left out, and so is the internal ``invalid`` tool.
        """
        await self.refresh()
        candidates = {tool.id: tool for tool in self.list() if tool.id != INVALID_TOOL}
        blocked = disabled_tools(list(candidates), ruleset)
        for tool_id, enabled in (overrides or {}).items():
            if not enabled:
                blocked.add(tool_id)
        return {tool_id: tool for tool_id, tool in candidates.items() if tool_id not in blocked}

    async def definitions(
        self,
        ruleset: Ruleset,
        overrides: Optional[Dict[str, bool]] = None,
    ) -> List[Dict[str, Any]]:
        return [tool.describe() for tool in (await self.resolve(ruleset, overrides)).values()]

    async def execute(
        self,
        tool: ToolInfo,
        args: Any,
        ctx: ToolContext,
        options: Optional[TruncateOptions] = None,
    ) -> ToolResult:
        """Validate, run and truncate one tool call.

        Raises:
            ToolValidationError: ``args`` do not match the tool's schema.
        """
        params = tool.parse(args)
        result = await tool.execute(params, ctx)

        if tool.auto_truncate and result.metadata.get("truncated") is None:
            truncated = await self.truncate.output(
                result.output,
                options,
                has_task_tool=self.get("task") is not None,
            )
            result.output = truncated.content
            result.metadata["truncated"] = truncated.truncated
            if truncated.output_path:
                result.metadata["output_path"] = truncated.output_path
        return result

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
