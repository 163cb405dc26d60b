"""OpenAI SDK wrapper for streaming chat completions."""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from ...util.log import Log
from .types import StreamChunk, ToolCall

log = Log.create({"service": "sdk.openai"})

_RESERVED = {
    "model",
    "messages",
    "stream",
    "stream_options",
    "tools",
    "max_tokens",
    "temperature",
    "top_p",
}


def _parse_arguments(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _usage(usage: Any) -> Dict[str, int]:
    result = {
        "input_tokens": int(usage.prompt_tokens or 0),
        "output_tokens": int(usage.completion_tokens or 0),
    }
    completion_details = getattr(usage, "completion_tokens_details", None)
    reasoning = getattr(completion_details, "reasoning_tokens", None)
    if reasoning:
        result["reasoning_tokens"] = int(reasoning)
    prompt_details = getattr(usage, "prompt_tokens_details", None)
    cached = getattr(prompt_details, "cached_tokens", None)
    if cached:
        result["cache_read_tokens"] = int(cached)
    return result


class OpenAISDK:
    """Wrapper for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.client = AsyncOpenAI(
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
        """Stream a chat completion.

        Args:
            model: API model id
            messages: Conversation in OpenAI chat format
            system: System prompt, sent as the first message
            tools: Function definitions
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            top_p: Top-p sampling
            options: Extra request fields such as ``reasoning_effort``

        Yields:
            StreamChunk objects for each event
        """
        if system:
            messages = [{"role": "system", "content": system}, *messages]
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            params["tools"] = tools
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if temperature is not None:
            params["temperature"] = temperature
        if top_p is not None:
            params["top_p"] = top_p
        for key, value in (options or {}).items():
            if key not in _RESERVED:
                params[key] = value

        log.info("streaming", {"model": model, "message_count": len(messages)})

        # OpenAI sends tool calls incrementally, keyed by index.
        in_progress: Dict[int, Dict[str, Any]] = {}
        reasoning_open = False

        stream = await self.client.chat.completions.create(**params)
        yield StreamChunk(type="message_start")

        async for chunk in stream:
            if not chunk.choices:
                if chunk.usage:
                    yield StreamChunk(type="message_delta", usage=_usage(chunk.usage))
                continue

            choice = chunk.choices[0]
            delta = choice.delta

            # OpenAI-compatible gateways stream reasoning in a side field.
            reasoning = getattr(delta, "reasoning_content", None)
            if isinstance(reasoning, str) and reasoning:
                if not reasoning_open:
                    reasoning_open = True
                    yield StreamChunk(type="reasoning_start", reasoning_id="reasoning_0")
                yield StreamChunk(type="reasoning_delta", reasoning_id="reasoning_0", reasoning_text=reasoning)

            if delta.content:
                if reasoning_open:
                    reasoning_open = False
                    yield StreamChunk(type="reasoning_end", reasoning_id="reasoning_0")
                yield StreamChunk(type="text", text=delta.content)

            for tc in delta.tool_calls or []:
                current = in_progress.setdefault(
                    tc.index, {"id": "", "name": "", "arguments": "", "started": False}
                )
                if tc.id:
                    current["id"] = tc.id
                if tc.function and tc.function.name:
                    current["name"] = tc.function.name
                if not current["started"] and current["id"] and current["name"]:
                    current["started"] = True
                    yield StreamChunk(
                        type="tool_call_start",
                        tool_call_id=current["id"],
                        tool_call_name=current["name"],
                    )
                if tc.function and tc.function.arguments:
                    current["arguments"] += tc.function.arguments
                    yield StreamChunk(
                        type="tool_call_delta",
                        tool_call_id=current["id"] or f"tool_call_{tc.index}",
                        tool_call_input_delta=tc.function.arguments,
                    )

            if choice.finish_reason:
                if reasoning_open:
                    reasoning_open = False
                    yield StreamChunk(type="reasoning_end", reasoning_id="reasoning_0")
                for idx in sorted(in_progress):
                    data = in_progress[idx]
                    yield StreamChunk(
                        type="tool_call_end",
                        tool_call=ToolCall(
                            id=data["id"],
                            name=data["name"],
                            input=_parse_arguments(data["arguments"]),
                            raw=data["arguments"],
                        ),
                    )
                in_progress.clear()
                yield StreamChunk(type="message_delta", stop_reason=choice.finish_reason)

        yield StreamChunk(type="message_end")
