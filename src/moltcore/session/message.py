"""Message and part records.

A turn stores one user message and one assistant message. The assistant
message owns the parts streamed for it: text, reasoning, tool calls and the
step markers that delimit each model call.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

INTERRUPTED_TOOL_RESULT = "[Tool execution was interrupted]"


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.input += other.input
        self.output += other.output
        self.reasoning += other.reasoning
        self.cache_read += other.cache_read
        self.cache_write += other.cache_write

    @classmethod
    def from_usage(cls, usage: Dict[str, int]) -> "TokenUsage":
        """Build from the ``*_tokens`` keys reported by the SDK adapters."""
        return cls(
            input=usage.get("input_tokens", 0),
            output=usage.get("output_tokens", 0),
            reasoning=usage.get("reasoning_tokens", 0),
            cache_read=usage.get("cache_read_tokens", 0),
            cache_write=usage.get("cache_write_tokens", 0),
        )


class ErrorInfo(BaseModel):
    """User-visible error attached to a message or a session.error event."""
    name: str
    message: str
    data: Optional[Dict[str, Any]] = None


class MessageTime(BaseModel):
    created: int
    completed: Optional[int] = None


class UserMessage(BaseModel):
    id: str
    session_id: str
    role: Literal["user"] = "user"
    text: str
    agent: Optional[str] = None
    model: Optional[str] = None
    system: Optional[List[str]] = None
    tools: Optional[Dict[str, bool]] = None
    time: MessageTime


class AssistantMessage(BaseModel):
    id: str
    session_id: str
    role: Literal["assistant"] = "assistant"
    agent: str
    provider_id: str
    model_id: str
    parent_id: str
    cost: float = 0
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    finish: Optional[str] = None
    error: Optional[ErrorInfo] = None
    time: MessageTime


MessageInfo = Annotated[Union[UserMessage, AssistantMessage], Field(discriminator="role")]


class PartTime(BaseModel):
    start: int
    end: Optional[int] = None


class _PartBase(BaseModel):
    id: str
    session_id: str
    message_id: str


class TextPart(_PartBase):
    type: Literal["text"] = "text"
    text: str = ""
    time: PartTime


class ReasoningPart(_PartBase):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    time: PartTime


class ToolTime(BaseModel):
    start: int
    end: Optional[int] = None


class ToolStatePending(BaseModel):
    status: Literal["pending"] = "pending"
    input: Dict[str, Any] = Field(default_factory=dict)
    raw: str = ""


class ToolStateRunning(BaseModel):
    status: Literal["running"] = "running"
    input: Dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    time: ToolTime


class ToolStateCompleted(BaseModel):
    status: Literal["completed"] = "completed"
    input: Dict[str, Any] = Field(default_factory=dict)
    output: str
    title: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    time: ToolTime


class ToolStateError(BaseModel):
    status: Literal["error"] = "error"
    input: Dict[str, Any] = Field(default_factory=dict)
    error: str
    metadata: Optional[Dict[str, Any]] = None
    time: ToolTime


ToolState = Annotated[
    Union[ToolStatePending, ToolStateRunning, ToolStateCompleted, ToolStateError],
    Field(discriminator="status"),
]


class ToolPart(_PartBase):
    type: Literal["tool"] = "tool"
    tool: str
    call_id: str
    state: ToolState = Field(default_factory=ToolStatePending)


class StepStartPart(_PartBase):
    type: Literal["step-start"] = "step-start"


class StepFinishPart(_PartBase):
    type: Literal["step-finish"] = "step-finish"
    reason: Optional[str] = None
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0


Part = Annotated[
    Union[TextPart, ReasoningPart, ToolPart, StepStartPart, StepFinishPart],
    Field(discriminator="type"),
]


class MessageWithParts(BaseModel):
    info: MessageInfo
    parts: List[Part] = Field(default_factory=list)


def tool_call_message(text: str, tool_parts: List[ToolPart]) -> Dict[str, Any]:
    """Assistant message in OpenAI chat format for one step."""
    message: Dict[str, Any] = {"role": "assistant", "content": text or None}
    if tool_parts:
        message["tool_calls"] = [
            {
                "id": part.call_id,
                "type": "function",
                "function": {"name": part.tool, "arguments": json.dumps(part.state.input)},
            }
            for part in tool_parts
        ]
    return message


def tool_result_message(part: ToolPart) -> Dict[str, Any]:
    state = part.state
    if isinstance(state, ToolStateCompleted):
        content = state.output
    elif isinstance(state, ToolStateError):
        content = state.error
    else:
        content = INTERRUPTED_TOOL_RESULT
    return {"role": "tool", "tool_call_id": part.call_id, "content": content}


def to_model_messages(messages: List[MessageWithParts]) -> List[Dict[str, Any]]:
    """Rebuild the model conversation from stored messages.

    Only finished steps of assistant messages are replayed. A step that was
    cut short by a stream error or an abort has no ``step-finish`` marker.
    """
    result: List[Dict[str, Any]] = []
    for message in messages:
        info = message.info
        if isinstance(info, UserMessage):
            result.append({"role": "user", "content": info.text})
            continue

        texts: List[str] = []
        tools: List[ToolPart] = []
        for part in message.parts:
            if isinstance(part, StepStartPart):
                texts, tools = [], []
            elif isinstance(part, TextPart):
                texts.append(part.text)
            elif isinstance(part, ToolPart):
                tools.append(part)
            elif isinstance(part, StepFinishPart):
                text = "".join(texts)
                if not text and not tools:
                    continue
                result.append(tool_call_message(text, tools))
                result.extend(tool_result_message(tool) for tool in tools)
                texts, tools = [], []
    return result
