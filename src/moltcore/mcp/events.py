"""Bus events published by the MCP client manager."""

from pydantic import BaseModel

from ..core.bus import BusEvent


class McpToolsChangedProps(BaseModel):
    server: str


McpToolsChanged = BusEvent.define("mcp.tools.changed", McpToolsChangedProps)
