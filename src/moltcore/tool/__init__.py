"""Tool contract, registry and builtin tools."""

from .registry import ToolRegistry
from .tool import Tool, ToolContext, ToolInfo, ToolResult, ToolValidationError
from .truncation import Truncate, TruncateOptions, TruncateResult

__all__ = [
    "Tool",
    "ToolContext",
    "ToolInfo",
    "ToolResult",
    "ToolValidationError",
    "ToolRegistry",
    "Truncate",
    "TruncateOptions",
    "TruncateResult",
]
