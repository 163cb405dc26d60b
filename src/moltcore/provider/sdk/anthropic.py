"""Anthropic SDK wrapper for streaming messages."""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

from anthropic import AsyncAnthropic
from anthropic.types import (
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    MessageDeltaEvent,
    MessageStartEvent,
    MessageStopEvent,
    TextBlock,
    ToolUseBlock,
)

from ...util.log import Log
from ..transform import ProviderTransform
from .types import StreamChunk, ToolCall

log = Log.create({"service": "sdk.anthropic"})

_RESERVED = {
    "model",
    "messages",
    "max_tokens",
    "system",
    "tools",
    "temperature",
    "top_p",
}


def _tool_call(state: Dict[str, Any]) -> ToolCall:
    raw = str(state.get("input_json") or "")
    try:
        tool_input = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        tool_input = {}
    return ToolCall(
        id=str(state.get("id") or ""),
        name=str(state.get("name") or ""),
        input=tool_input if isinstance(tool_input, dict) else {},
        raw=raw,
    )


class AnthropicSDK:
    """Wrapper for the Anthropic messages API.

    Accepts the same OpenAI-style messages and function definitions as
    ``OpenAISDK`` and converts them before sending.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.client = AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            default_headers=headers or None,
        )

    async def stream(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamChunk]:
        params: Dict[str, Any] = {
            "model": model,
            "messages": ProviderTransform.anthropic_messages(messages),
            "max_tokens": max_tokens or ProviderTransform.OUTPUT_TOKEN_MAX,
        }
        if system:
            params["system"] = system
        converted = ProviderTransform.anthropic_tools(tools)
        if converted:
            params["tools"] = converted
        if temperature is not None:
            params["temperature"] = temperature
        if top_p is not None:
            params["top_p"] = top_p
        for key, value in (options or {}).items():
            if key not in _RESERVED:
                params[key] = value

        thinking = params.get("thinking")
        if isinstance(thinking, dict) and thinking.get("budget_tokens"):
            # max_tokens must leave room for the answer after the budget.
            budget = int(thinking["budget_tokens"])
            if params["max_tokens"] <= budget:
                params["max_tokens"] = budget + 4096
            params.pop("temperature", None)
            params.pop("top_p", None)

        log.info("streaming", {"model": model, "message_count": len(params["messages"])})

        kinds: Dict[int, str] = {}
        tool_state: Dict[int, Dict[str, Any]] = {}
        reasoning_ids: Dict[int, str] = {}

        async with self.client.messages.stream(**params) as stream:
            async for event in stream:
                if isinstance(event, MessageStartEvent):
                    usage: Dict[str, int] = {"input_tokens": event.message.usage.input_tokens}
                    if getattr(event.message.usage, "cache_read_input_tokens", None):
                        usage["cache_read_tokens"] = int(event.message.usage.cache_read_input_tokens)
                    if getattr(event.message.usage, "cache_creation_input_tokens", None):
                        usage["cache_write_tokens"] = int(event.message.usage.cache_creation_input_tokens)
                    yield StreamChunk(type="message_start", usage=usage)

                elif isinstance(event, ContentBlockStartEvent):
                    index = int(event.index or 0)
                    block = event.content_block
                    if isinstance(block, TextBlock):
                        kinds[index] = "text"
                    elif isinstance(block, ToolUseBlock):
                        kinds[index] = "tool"
                        tool_state[index] = {"id": block.id, "name": block.name, "input_json": ""}
                        yield StreamChunk(
                            type="tool_call_start",
                            tool_call_id=block.id,
                            tool_call_name=block.name,
                        )
                    elif getattr(block, "type", "") in ("thinking", "redacted_thinking"):
                        reasoning_id = f"reasoning_{index}"
                        kinds[index] = "reasoning"
                        reasoning_ids[index] = reasoning_id
                        yield StreamChunk(type="reasoning_start", reasoning_id=reasoning_id)
                        initial = getattr(block, "thinking", None)
                        if isinstance(initial, str) and initial:
                            yield StreamChunk(type="reasoning_delta", reasoning_id=reasoning_id, reasoning_text=initial)

                elif isinstance(event, ContentBlockDeltaEvent):
                    index = int(event.index or 0)
                    kind = kinds.get(index)
                    if kind == "text":
                        text = getattr(event.delta, "text", None)
                        if text:
                            yield StreamChunk(type="text", text=text)
                    elif kind == "tool":
                        partial = getattr(event.delta, "partial_json", None)
                        state = tool_state.get(index)
                        if partial and state:
                            state["input_json"] += partial
                            yield StreamChunk(
                                type="tool_call_delta",
                                tool_call_id=state["id"],
                                tool_call_input_delta=partial,
                            )
                    elif kind == "reasoning":
                        text = getattr(event.delta, "thinking", None)
                        if text:
                            yield StreamChunk(
                                type="reasoning_delta",
                                reasoning_id=reasoning_ids[index],
                                reasoning_text=text,
                            )

                elif isinstance(event, ContentBlockStopEvent):
                    index = int(event.index or 0)
                    kind = kinds.pop(index, None)
                    if kind == "tool":
                        yield StreamChunk(type="tool_call_end", tool_call=_tool_call(tool_state.pop(index, {})))
                    elif kind == "reasoning":
                        yield StreamChunk(type="reasoning_end", reasoning_id=reasoning_ids.pop(index))

                elif isinstance(event, MessageDeltaEvent):
                    yield StreamChunk(
                        type="message_delta",
                        stop_reason=event.delta.stop_reason,
                        usage={"output_tokens": event.usage.output_tokens},
                    )

                elif isinstance(event, MessageStopEvent):
                    for index in list(tool_state):
                        yield StreamChunk(type="tool_call_end", tool_call=_tool_call(tool_state.pop(index)))
                    for index in list(reasoning_ids):
                        yield StreamChunk(type="reasoning_end", reasoning_id=reasoning_ids.pop(index))
                    yield StreamChunk(type="message_end")
