"""Dispatch target for tool names the model made up.

The session processor routes a call whose name is not among the step's tools
here, so the model receives a corrective tool result instead of the turn
failing.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .tool import Tool, ToolContext, ToolResult


def unknown_tool_message(tool: str, available: List[str], error: Optional[str] = None) -> str:
    listed = ", ".join(sorted(available)) or "none"
    message = f"Unknown tool: {tool}. Available tools: {listed}."
    if error:
        message += f" {error}"
    return message + "\nCall one of the available tools with arguments matching its schema."


class InvalidParams(BaseModel):
    tool: str = Field(..., description="Tool name the model asked for")
    available: List[str] = Field(default_factory=list, description="Tools offered in this step")
    error: Optional[str] = Field(None, description="Extra detail about the failed dispatch")


async def invalid_execute(params: InvalidParams, _ctx: ToolContext) -> ToolResult:
    return ToolResult(
        title=f"Unknown tool {params.tool}",
        output=unknown_tool_message(params.tool, params.available, params.error),
        metadata={"tool": params.tool, "available": sorted(params.available)},
    )


InvalidTool = Tool.define(
    tool_id="invalid",
    description="Do not use.",
    parameters_type=InvalidParams,
    execute_fn=invalid_execute,
    auto_truncate=False,
)
