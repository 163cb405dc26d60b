"""Stream chunk types shared by the SDK adapters."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ToolCall:
    """A completed tool call emitted by the model."""
    id: str
    name: str
    input: Dict[str, Any]
    raw: str = ""


@dataclass
class StreamChunk:
    """A chunk from a streaming response.

    ``type`` is one of ``message_start``, ``text``, ``reasoning_start``,
    ``reasoning_delta``, ``reasoning_end``, ``tool_call_start``,
    ``tool_call_delta``, ``tool_call_end``, ``message_delta``, ``message_end``
    or ``error``.
    """
    type: str
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_call_id: Optional[str] = None
    tool_call_name: Optional[str] = None
    tool_call_input_delta: Optional[str] = None
    reasoning_id: Optional[str] = None
    reasoning_text: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    stop_reason: Optional[str] = None
    error: Optional[BaseException] = None
