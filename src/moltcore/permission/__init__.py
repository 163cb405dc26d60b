"""Permission management."""

from .constants import DOOM_LOOP, EDIT_TOOLS, permission_for_tool
from .permission import (
    CorrectedError,
    DeniedError,
    Permission,
    PermissionAction,
    PermissionAsked,
    PermissionReplied,
    PermissionRepliedProperties,
    PermissionReply,
    PermissionRequest,
    PermissionRule,
    RejectedError,
    Ruleset,
    disabled_tools,
    evaluate,
    from_config,
    from_config_list,
    merge,
)

__all__ = [
    "DOOM_LOOP",
    "EDIT_TOOLS",
    "permission_for_tool",
    "Permission",
    "PermissionAction",
    "PermissionAsked",
    "PermissionReplied",
    "PermissionRepliedProperties",
    "PermissionReply",
    "PermissionRequest",
    "PermissionRule",
    "Ruleset",
    "RejectedError",
    "CorrectedError",
    "DeniedError",
    "disabled_tools",
    "evaluate",
    "from_config",
    "from_config_list",
    "merge",
]
