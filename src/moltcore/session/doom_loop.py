"""Doom loop detection for repeated tool calls."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..permission import DOOM_LOOP

if TYPE_CHECKING:
    from ..permission import Permission, Ruleset


def signature(tool_name: str, tool_input: Dict[str, Any]) -> str:
    return f"{tool_name}:{json.dumps(tool_input, sort_keys=True, default=str)}"


class DoomLoopDetector:
    """Ask before a tool call that repeats the previous ``threshold`` calls.

    One detector lives per session, so repeats are counted across turns.
    """

    def __init__(
        self,
        *,
        permission: Permission,
        session_id: str,
        threshold: int = 3,
        window: int = 50,
    ) -> None:
        self.permission = permission
        self.session_id = session_id
        self.threshold = threshold
        self.window = window
        self.signatures: List[str] = []

    def repeats(self, tool_name: str, tool_input: Dict[str, Any]) -> bool:
        """True if the last ``threshold`` calls equal this one."""
        if len(self.signatures) < self.threshold:
            return False
        current = signature(tool_name, tool_input)
        return all(s == current for s in self.signatures[-self.threshold:])

    def record(self, tool_name: str, tool_input: Dict[str, Any]) -> None:
        self.signatures.append(signature(tool_name, tool_input))
        if len(self.signatures) > self.window:
            del self.signatures[: -self.window]

    async def check(
        self,
        *,
        tool_name: str,
        tool_input: Dict[str, Any],
        ruleset: Ruleset,
        abort: Optional[asyncio.Event] = None,
        tool: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record the call and ask ``doom_loop`` if it is a repeat.

        Raises:
            DeniedError, RejectedError, CorrectedError, AbortedError: From the
                permission engine.
        """
        repeated = self.repeats(tool_name, tool_input)
        self.record(tool_name, tool_input)
        if not repeated:
            return
        await self.permission.ask(
            session_id=self.session_id,
            permission=DOOM_LOOP,
            patterns=[tool_name],
            ruleset=ruleset,
            always=[tool_name],
            metadata={"tool": tool_name, "input": tool_input},
            tool=tool,
            abort=abort,
        )
