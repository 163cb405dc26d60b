"""External tool servers spoken to over the Model Context Protocol.

Import ``moltcore.mcp.mcp`` for the client manager. This package module only
exposes the bus events so the tool registry can depend on them without
pulling in the client.
"""

from .events import McpToolsChanged, McpToolsChangedProps

__all__ = ["McpToolsChanged", "McpToolsChangedProps"]
