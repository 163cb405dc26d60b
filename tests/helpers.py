"""Shared test helpers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from moltcore.core.config_schema import Config
from moltcore.provider.sdk.types import StreamChunk, ToolCall
from moltcore.runtime import AppRuntime
from moltcore.tool import Tool, ToolContext, ToolInfo, ToolResult

MODEL = "fake/fake-model"
QUIET_ENV = {"MOLTCORE_LOG_FILE": "false"}


class FakeSDK:
    """Scripted stand-in for a provider SDK.

    Every ``stream`` call consumes the next script. Script items are yielded
    in order. An exception item is raised at that point and an
    ``asyncio.Event`` item blocks the stream until the event is set.
    """

    def __init__(self, scripts: Iterable[List[Any]] = ()) -> None:
        self.scripts: List[List[Any]] = [list(s) for s in scripts]
        self.calls: List[Dict[str, Any]] = []

    def add(self, *scripts: List[Any]) -> None:
        self.scripts.extend(list(s) for s in scripts)

    async def stream(self, **kwargs: Any):  # type: ignore[no-untyped-def]
        self.calls.append(kwargs)
        if not self.scripts:
            raise AssertionError("FakeSDK has no scripted response left")
        for item in self.scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            yield item


def reply(text: str, *, usage: Optional[Dict[str, int]] = None) -> List[Any]:
    """Chunks of a plain text answer."""
    return [
        StreamChunk(type="message_start", usage={"input_tokens": 10}),
        StreamChunk(type="text", text=text),
        StreamChunk(type="message_end", stop_reason="stop", usage=usage or {"input_tokens": 10, "output_tokens": 2}),
    ]


def tool_call(call_id: str, name: str, args: Dict[str, Any]) -> List[Any]:
    """Chunks of a single tool call."""
    return [
        StreamChunk(type="message_start", usage={"input_tokens": 10}),
        StreamChunk(type="tool_call_start", tool_call_id=call_id, tool_call_name=name),
        StreamChunk(type="tool_call_end", tool_call=ToolCall(id=call_id, name=name, input=args)),
        StreamChunk(type="message_end", stop_reason="tool_calls"),
    ]


def fake_config(**overrides: Any) -> Config:
    data: Dict[str, Any] = {
        "model": MODEL,
        "provider": {
            "fake": {
                "type": "openai",
                "api_key": "test-key",
                "models": {"fake-model": {}, "backup-model": {}},
            },
        },
        "session": {"retry_base_ms": 1, "retry_max_ms": 5},
    }
    data.update(overrides)
    return Config.model_validate(data)


def make_runtime(
    tmp_path: Path,
    sdk: FakeSDK,
    *,
    config: Optional[Config] = None,
    **kwargs: Any,
) -> AppRuntime:
    """AppRuntime wired to ``sdk`` with storage and auth under ``tmp_path``."""
    return AppRuntime(
        str(tmp_path),
        config=config or fake_config(),
        storage_root=tmp_path / "storage",
        auth_path=tmp_path / "auth-profiles.json",
        client_factories={"openai": lambda _model, _key: sdk},
        env=QUIET_ENV,
        **kwargs,
    )


class EchoParams(BaseModel):
    text: str


async def _echo(params: EchoParams, ctx: ToolContext) -> ToolResult:
    await ctx.ask(permission="echo", patterns=[params.text], always=[params.text])
    return ToolResult(title="echo", output=params.text)


def echo_tool() -> ToolInfo:
    """Tool that asks ``echo`` permission for its text and returns it."""
    return Tool.define(
        tool_id="echo",
        description="Echo the given text back.",
        parameters_type=EchoParams,
        execute_fn=_echo,
    )


class WaitParams(BaseModel):
    label: str = ""


def waiting_tool(gate: asyncio.Event) -> ToolInfo:
    """Tool that blocks until ``gate`` is set."""

    async def _wait(params: WaitParams, ctx: ToolContext) -> ToolResult:
        ctx.metadata(title="waiting", metadata={"label": params.label})
        await gate.wait()
        return ToolResult(title="wait", output="released")

    return Tool.define(
        tool_id="wait",
        description="Wait for a signal.",
        parameters_type=WaitParams,
        execute_fn=_wait,
    )
