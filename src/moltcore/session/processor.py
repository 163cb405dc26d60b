"""Stream processing for one assistant turn.

A turn runs model steps until the model stops calling tools. Each step
streams chunks into parts, executes tool calls as soon as their input is
complete and records token usage. Transient failures restart the step with
fresh parts, failing credentials rotate to the next auth profile, and an
unsupported thinking level is lowered before the turn gives up.
"""

import asyncio
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..agent import AgentInfo
from ..core.bus import Bus
from ..core.id import Identifier
from ..permission import DeniedError, Permission, RejectedError
from ..provider import AuthRotation, FailoverError, Provider
from ..provider.errors import (
    classify_failover_reason,
    is_compaction_failure,
    is_context_overflow,
    pick_fallback_thinking_level,
)
from ..provider.models import ModelInfo
from ..provider.provider import LanguageClient
from ..provider.sdk.types import StreamChunk, ToolCall
from ..storage import Storage
from ..tool import ToolContext, ToolInfo, ToolRegistry
from ..tool.invalid import unknown_tool_message
from ..util.abort import AbortedError, race_abort
from ..util.error import describe_error, error_info
from ..util.log import Log
from .doom_loop import DoomLoopDetector
from .events import (
    MessagePartUpdated,
    MessagePartUpdatedProperties,
    MessageUpdated,
    MessageUpdatedProperties,
    SessionError,
    SessionErrorProperties,
)
from .llm import LLM, StreamInput
from .message import (
    AssistantMessage,
    ErrorInfo,
    PartTime,
    ReasoningPart,
    StepFinishPart,
    StepStartPart,
    TextPart,
    TokenUsage,
    ToolPart,
    ToolStateCompleted,
    ToolStateError,
    ToolStatePending,
    ToolStateRunning,
    ToolTime,
    tool_call_message,
    tool_result_message,
)
from .retry import SessionRetry

log = Log.create({"service": "session.processor"})

INVALID_TOOL = "invalid"

MAX_STEPS_PROMPT = (
    "The maximum number of steps for this turn has been reached. Tools are disabled. "
    "Summarize what was done and what remains."
)

ABORTED_TOOL = "Tool execution aborted"
INTERRUPTED_TOOL = "Tool call interrupted by a stream error"


def _now() -> int:
    return int(time.time() * 1000)


class StreamError(RuntimeError):
    """An error chunk reported inside a provider stream."""


class ContextOverflowError(Exception):
    """The conversation no longer fits the model's context window."""

    MESSAGE = (
        "Context overflow: prompt too large for the model. "
        "Try again with less input or a larger-context model."
    )

    def __init__(self, kind: str = "overflow", detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        super().__init__(self.MESSAGE)


@dataclass
class StepOutcome:
    text: str = ""
    tool_parts: List[ToolPart] = field(default_factory=list)
    finish: Optional[str] = None


class SessionProcessor:
    """Drives the steps of one assistant message."""

    def __init__(
        self,
        *,
        bus: Bus,
        storage: Storage,
        provider: Provider,
        registry: ToolRegistry,
        permission: Permission,
        message: AssistantMessage,
        agent: AgentInfo,
        model: ModelInfo,
        rotation: AuthRotation,
        doom: DoomLoopDetector,
        retry: SessionRetry,
        abort: asyncio.Event,
        system: Optional[List[str]] = None,
        tools: Optional[Dict[str, bool]] = None,
        cwd: Optional[str] = None,
        fallback_configured: bool = False,
    ) -> None:
        self.bus = bus
        self.storage = storage
        self.provider = provider
        self.registry = registry
        self.permission = permission
        self.message = message
        self.agent = agent
        self.model = model
        self.rotation = rotation
        self.doom = doom
        self.retry = retry
        self.abort = abort
        self.system = list(system or [])
        self.tools_override = tools
        self.cwd = cwd
        self.fallback_configured = fallback_configured
        self.ruleset = list(agent.permission)

        self.thinking: Optional[str] = agent.thinking
        self.attempted_thinking: Set[str] = set()
        self.texts: List[str] = []

        self._step_tools: Dict[str, ToolInfo] = {}
        self._step_texts: List[TextPart] = []
        self._text: Optional[TextPart] = None
        self._reasoning: Dict[str, ReasoningPart] = {}
        self._tool_parts: Dict[str, ToolPart] = {}
        self._usage: Dict[str, int] = {}
        self._finish: Optional[str] = None
        self._metadata_tasks: Set[asyncio.Task] = set()

    @property
    def session_id(self) -> str:
        return self.message.session_id

    async def process(self, messages: List[Dict[str, Any]]) -> None:
        """Run the turn.

        Failures are recorded on ``message.error``. A user abort is not
        reported as a session error. ``FailoverError`` propagates so the
        caller can try the next fallback model.
        """
        try:
            await self._loop(list(messages))
        except AbortedError as e:
            await self._finalize_open(ABORTED_TOOL)
            self.message.error = ErrorInfo(**error_info(e))
            log.info("aborted", {"session_id": self.session_id, "message_id": self.message.id})
        except FailoverError as e:
            await self._finalize_open(INTERRUPTED_TOOL)
            self.message.error = ErrorInfo(**error_info(e))
            log.warn("model failed over", {"provider": e.provider, "model": e.model, "reason": e.reason})
            raise
        except Exception as e:
            await self._finalize_open(INTERRUPTED_TOOL)
            info = ErrorInfo(**error_info(e))
            if isinstance(e, ContextOverflowError):
                info.data = {"kind": e.kind}
            self.message.error = info
            log.error("turn failed", {"session_id": self.session_id, "error": e})
            await self.bus.publish(SessionError, SessionErrorProperties(session_id=self.session_id, error=info))
        finally:
            self.message.time.completed = _now()
            await self._save_message()

    async def _loop(self, messages: List[Dict[str, Any]]) -> None:
        step = 0
        while True:
            step += 1
            last = self.agent.steps is not None and step >= self.agent.steps
            if last:
                tools: Dict[str, ToolInfo] = {}
                request = [*messages, {"role": "assistant", "content": MAX_STEPS_PROMPT}]
            else:
                tools = await self.registry.resolve(self.ruleset, self.tools_override)
                request = messages

            outcome = await self._step(request, tools)
            self.message.finish = outcome.finish
            if not outcome.tool_parts or last:
                return
            messages.append(tool_call_message(outcome.text, outcome.tool_parts))
            messages.extend(tool_result_message(part) for part in outcome.tool_parts)

    async def _step(self, messages: List[Dict[str, Any]], tools: Dict[str, ToolInfo]) -> StepOutcome:
        attempt = 0
        while True:
            credential = self.rotation.current()
            client = self.provider.get_language_client(self.model, credential.key, credential.profile_id)
            self.attempted_thinking.add(self.thinking or "off")
            try:
                outcome = await race_abort(self._attempt(client, messages, tools), self.abort)
            except (AbortedError, DeniedError, RejectedError):
                raise
            except Exception as e:
                await self._finalize_open(INTERRUPTED_TOOL)
                text = describe_error(e)

                if is_context_overflow(text):
                    kind = "compaction_failure" if is_compaction_failure(text) else "overflow"
                    raise ContextOverflowError(kind, text) from e

                if self.retry.should_retry(attempt, e):
                    attempt += 1
                    delay = self.retry.delay_ms(attempt, e)
                    log.warn("retrying stream", {"attempt": attempt, "delay_ms": delay, "error": text})
                    await self.retry.sleep(delay, self.abort)
                    continue

                reason = classify_failover_reason(text)
                if reason is not None and reason != "timeout":
                    self.rotation.mark_failure(reason)
                    if self.rotation.advance():
                        attempt = 0
                        continue

                level = pick_fallback_thinking_level(text, self.attempted_thinking)
                if level is not None:
                    log.warn("lowering thinking level", {"from": self.thinking, "to": level})
                    self.thinking = level
                    continue

                if self.fallback_configured and reason is not None:
                    raise FailoverError(
                        text,
                        reason=reason,
                        provider=self.model.provider_id,
                        model=self.model.id,
                        profile_id=self.rotation.profile_id,
                    ) from e
                raise

            self.rotation.mark_good()
            return outcome

    async def _attempt(
        self,
        client: LanguageClient,
        messages: List[Dict[str, Any]],
        tools: Dict[str, ToolInfo],
    ) -> StepOutcome:
        self._step_tools = tools
        self._step_texts = []
        self._text = None
        self._reasoning = {}
        self._tool_parts = {}
        self._usage = {}
        self._finish = None

        await self._save_part(StepStartPart(
            id=Identifier.ascending("part"),
            session_id=self.session_id,
            message_id=self.message.id,
        ))

        stream_input = StreamInput(
            session_id=self.session_id,
            model=self.model,
            messages=messages,
            system=self.system,
            tools=[tool.describe() for tool in tools.values()],
            temperature=self.agent.temperature,
            top_p=self.agent.top_p,
            thinking=self.thinking,
            options=dict(self.agent.options),
        )
        async with aclosing(LLM.stream(client, stream_input)) as stream:
            async for chunk in stream:
                await self._handle(chunk)

        await self._close_text()
        for reasoning_id in list(self._reasoning):
            await self._close_reasoning(reasoning_id)
        await self._drain_metadata()

        tokens = TokenUsage.from_usage(self._usage)
        cost = self._cost(tokens)
        self.message.tokens.add(tokens)
        self.message.cost += cost
        await self._save_part(StepFinishPart(
            id=Identifier.ascending("part"),
            session_id=self.session_id,
            message_id=self.message.id,
            reason=self._finish,
            tokens=tokens,
            cost=cost,
        ))
        await self._save_message()

        text = "".join(part.text for part in self._step_texts).rstrip()
        if text:
            self.texts.append(text)
        return StepOutcome(text=text, tool_parts=list(self._tool_parts.values()), finish=self._finish)

    async def _handle(self, chunk: StreamChunk) -> None:
        kind = chunk.type
        if kind in ("message_start", "message_delta", "message_end"):
            if chunk.usage:
                self._usage.update(chunk.usage)
            if chunk.stop_reason:
                self._finish = chunk.stop_reason
            if kind == "message_end":
                await self._close_text()
        elif kind == "text":
            if chunk.text:
                await self._text_delta(chunk.text)
        elif kind == "reasoning_start":
            await self._reasoning_delta(chunk.reasoning_id or "reasoning", "")
        elif kind == "reasoning_delta":
            await self._reasoning_delta(chunk.reasoning_id or "reasoning", chunk.reasoning_text or "")
        elif kind == "reasoning_end":
            await self._close_reasoning(chunk.reasoning_id or "reasoning")
        elif kind == "tool_call_start":
            await self._close_text()
            await self._tool_start(chunk.tool_call_id or Identifier.ascending("call"), chunk.tool_call_name or "")
        elif kind == "tool_call_delta":
            await self._tool_delta(chunk.tool_call_id, chunk.tool_call_input_delta or "")
        elif kind == "tool_call_end":
            if chunk.tool_call is not None:
                await self._run_tool(chunk.tool_call)
        elif kind == "error":
            if chunk.error is not None:
                raise chunk.error
            raise StreamError("Unknown stream error")

    async def _text_delta(self, delta: str) -> None:
        if self._text is None:
            self._text = TextPart(
                id=Identifier.ascending("part"),
                session_id=self.session_id,
                message_id=self.message.id,
                time=PartTime(start=_now()),
            )
            self._step_texts.append(self._text)
        self._text.text += delta
        await self._publish_part(self._text, delta)

    async def _close_text(self) -> None:
        part, self._text = self._text, None
        if part is None:
            return
        part.text = part.text.rstrip()
        part.time.end = _now()
        await self._save_part(part)

    async def _reasoning_delta(self, reasoning_id: str, delta: str) -> None:
        part = self._reasoning.get(reasoning_id)
        if part is None:
            part = ReasoningPart(
                id=Identifier.ascending("part"),
                session_id=self.session_id,
                message_id=self.message.id,
                time=PartTime(start=_now()),
            )
            self._reasoning[reasoning_id] = part
        part.text += delta
        await self._publish_part(part, delta or None)

    async def _close_reasoning(self, reasoning_id: str) -> None:
        part = self._reasoning.pop(reasoning_id, None)
        if part is None:
            return
        part.text = part.text.rstrip()
        part.time.end = _now()
        await self._save_part(part)

    async def _tool_start(self, call_id: str, name: str) -> ToolPart:
        part = ToolPart(
            id=Identifier.ascending("part"),
            session_id=self.session_id,
            message_id=self.message.id,
            tool=name,
            call_id=call_id,
            state=ToolStatePending(),
        )
        self._tool_parts[call_id] = part
        await self._save_part(part)
        return part

    async def _tool_delta(self, call_id: Optional[str], delta: str) -> None:
        part = self._tool_parts.get(call_id or "")
        if part is None or not isinstance(part.state, ToolStatePending):
            return
        part.state.raw += delta
        await self._publish_part(part)

    async def _run_tool(self, call: ToolCall) -> None:
        part = self._tool_parts.get(call.id)
        if part is None:
            await self._close_text()
            part = await self._tool_start(call.id, call.name)

        started = _now()
        part.state = ToolStateRunning(input=call.input, time=ToolTime(start=started))
        await self._save_part(part)

        tool = self._step_tools.get(call.name)
        args: Any = call.input
        if tool is None:
            args = {"tool": call.name, "available": sorted(self._step_tools)}
            tool = self.registry.get(INVALID_TOOL)
            if tool is None:
                await self._tool_error(part, unknown_tool_message(call.name, args["available"]))
                return

        ctx = ToolContext(
            session_id=self.session_id,
            message_id=self.message.id,
            agent=self.agent.name,
            call_id=call.id,
            abort=self.abort,
            extra={"cwd": self.cwd, "model": self.model.id},
            _on_metadata=lambda metadata: self._on_metadata(part, metadata),
            _ruleset=self.ruleset,
            _permission=self.permission,
        )
        try:
            await self.doom.check(
                tool_name=call.name,
                tool_input=call.input,
                ruleset=self.ruleset,
                abort=self.abort,
                tool={"message_id": self.message.id, "call_id": call.id},
            )
            result = await self.registry.execute(tool, args, ctx)
        except AbortedError:
            raise
        except (DeniedError, RejectedError) as e:
            await self._tool_error(part, str(e))
            raise
        except Exception as e:
            log.info("tool failed", {"tool": call.name, "call_id": call.id, "error": describe_error(e)})
            await self._tool_error(part, describe_error(e))
            return

        await self._drain_metadata()
        part.state = ToolStateCompleted(
            input=call.input,
            output=result.output,
            title=result.title,
            metadata=result.metadata,
            attachments=result.attachments,
            time=ToolTime(start=started, end=_now()),
        )
        await self._save_part(part)

    def _on_metadata(self, part: ToolPart, metadata: Dict[str, Any]) -> None:
        state = part.state
        if not isinstance(state, ToolStateRunning):
            return
        state.title = metadata.get("title") or state.title
        state.metadata = {k: v for k, v in metadata.items() if k != "title"}
        task = asyncio.ensure_future(self._publish_part(part.model_copy(deep=True)))
        self._metadata_tasks.add(task)
        task.add_done_callback(self._metadata_tasks.discard)

    async def _drain_metadata(self) -> None:
        if self._metadata_tasks:
            await asyncio.gather(*list(self._metadata_tasks), return_exceptions=True)

    async def _tool_error(self, part: ToolPart, error: str) -> None:
        await self._drain_metadata()
        state = part.state
        start = state.time.start if isinstance(state, ToolStateRunning) else _now()
        metadata = state.metadata if isinstance(state, ToolStateRunning) else None
        part.state = ToolStateError(
            input=state.input,
            error=error,
            metadata=metadata,
            time=ToolTime(start=start, end=_now()),
        )
        await self._save_part(part)

    async def _finalize_open(self, reason: str) -> None:
        """Close open parts left behind by a failed or aborted attempt."""
        await self._close_text()
        for reasoning_id in list(self._reasoning):
            await self._close_reasoning(reasoning_id)
        for part in self._tool_parts.values():
            if isinstance(part.state, (ToolStatePending, ToolStateRunning)):
                await self._tool_error(part, reason)

    def _cost(self, tokens: TokenUsage) -> float:
        cost = self.model.cost
        return (
            tokens.input * cost.input
            + tokens.output * cost.output
            + tokens.cache_read * cost.cache_read
            + tokens.cache_write * cost.cache_write
        ) / 1_000_000

    async def _publish_part(self, part: Any, delta: Optional[str] = None) -> None:
        await self.bus.publish(MessagePartUpdated, MessagePartUpdatedProperties(part=part, delta=delta))

    async def _save_part(self, part: Any) -> None:
        await self.storage.write(["part", self.message.id, part.id], part.model_dump(mode="json"))
        await self._publish_part(part)

    async def _save_message(self) -> None:
        await self.storage.write(
            ["message", self.session_id, self.message.id],
            self.message.model_dump(mode="json"),
        )
        await self.bus.publish(MessageUpdated, MessageUpdatedProperties(info=self.message))
