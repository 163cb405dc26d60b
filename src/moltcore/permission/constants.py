"""Permission keys shared by several tools."""

EDIT_TOOLS = ("edit", "write", "patch", "multiedit")

DOOM_LOOP = "doom_loop"

TOOL_PERMISSION_MAP: dict[str, str] = {tool: "edit" for tool in EDIT_TOOLS}


def permission_for_tool(tool_name: str) -> str:
    """Permission key a tool is checked under."""
    return TOOL_PERMISSION_MAP.get(tool_name, tool_name)
