"""Session management.

Sessions, their messages and message parts are stored as JSON under
``["session", id]``, ``["message", session_id, message_id]`` and
``["part", message_id, part_id]``. ``Session.chat`` runs one user turn with
model fallback and per-session exclusivity.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from ..agent import AgentInfo, AgentRegistry
from ..core.bus import Bus
from ..core.config_schema import Config
from ..core.id import Identifier
from ..permission import Permission
from ..provider import AuthProfileStore, AuthRotation, FailoverError, ModelNotFoundError, Provider
from ..storage import NotFoundError, Storage
from ..tool import ToolRegistry
from ..util.error import error_info
from ..util.log import Log
from .doom_loop import DoomLoopDetector
from .events import (
    MessageRemoved,
    MessageRemovedProperties,
    MessageUpdated,
    MessageUpdatedProperties,
    SessionCreated,
    SessionDeleted,
    SessionError,
    SessionErrorProperties,
    SessionInfo,
    SessionInfoProperties,
    SessionTime,
    SessionUpdated,
)
from .message import (
    AssistantMessage,
    ErrorInfo,
    MessageTime,
    MessageWithParts,
    TokenUsage,
    UserMessage,
    to_model_messages,
)
from .processor import SessionProcessor
from .retry import SessionRetry

log = Log.create({"service": "session"})

DEFAULT_PROMPT = (
    "You are a capable assistant working in the user's project. Use the available "
    "tools when they help and answer concisely."
)


def _now() -> int:
    return int(time.time() * 1000)


def _default_title() -> str:
    return "New session - " + datetime.now(timezone.utc).isoformat()


def _session_key(session_id: str) -> List[str]:
    return ["session", session_id]


def _message_key(session_id: str, message_id: str) -> List[str]:
    return ["message", session_id, message_id]


class BusyError(RuntimeError):
    """The session already has a turn in progress."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is busy")


@dataclass
class ChatResult:
    """Outcome of one ``Session.chat`` turn."""
    text: str = ""
    error: Optional[ErrorInfo] = None
    tokens: TokenUsage = field(default_factory=TokenUsage)
    message_id: Optional[str] = None


class Session:
    """Session store and turn runner for one runtime."""

    def __init__(
        self,
        *,
        bus: Bus,
        storage: Storage,
        provider: Provider,
        registry: ToolRegistry,
        permission: Permission,
        agents: AgentRegistry,
        auth: AuthProfileStore,
        config: Optional[Config] = None,
        directory: Optional[str] = None,
    ) -> None:
        self.bus = bus
        self.storage = storage
        self.provider = provider
        self.registry = registry
        self.permission = permission
        self.agents = agents
        self.auth = auth
        self.config = config or Config()
        self.directory = directory
        self._active: Dict[str, asyncio.Event] = {}
        self._running: Dict[str, Tuple[asyncio.Event, Optional[asyncio.Task]]] = {}
        self._doom: Dict[str, DoomLoopDetector] = {}

    async def create(
        self,
        title: Optional[str] = None,
        parent_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> SessionInfo:
        now = _now()
        info = SessionInfo(
            id=Identifier.descending("session", session_id),
            title=title or _default_title(),
            parent_id=parent_id,
            directory=self.directory,
            time=SessionTime(created=now, updated=now),
        )
        await self.storage.write(_session_key(info.id), info.model_dump(mode="json"))
        log.info("created", {"session_id": info.id})
        await self.bus.publish(SessionCreated, SessionInfoProperties(info=info))
        return info

    async def get(self, session_id: str) -> Optional[SessionInfo]:
        try:
            data = await self.storage.read(_session_key(session_id))
        except NotFoundError:
            return None
        return SessionInfo.model_validate(data)

    async def list(self) -> List[SessionInfo]:
        """All sessions, most recently updated first."""
        sessions: List[SessionInfo] = []
        for key in await self.storage.list(["session"]):
            try:
                sessions.append(SessionInfo.model_validate(await self.storage.read(key)))
            except NotFoundError:
                continue
        sessions.sort(key=lambda s: s.time.updated, reverse=True)
        return sessions

    async def update(self, session_id: str, editor: Callable[[SessionInfo], None]) -> SessionInfo:
        """Apply ``editor`` to the stored session and bump its update time.

        Raises:
            NotFoundError: The session does not exist.
        """
        result: Dict[str, SessionInfo] = {}

        def apply(data: Dict) -> Dict:
            info = SessionInfo.model_validate(data)
            editor(info)
            info.time.updated = _now()
            result["info"] = info
            return info.model_dump(mode="json")

        await self.storage.update(_session_key(session_id), apply)
        info = result["info"]
        await self.bus.publish(SessionUpdated, SessionInfoProperties(info=info))
        return info

    async def remove(self, session_id: str) -> None:
        """Delete a session with its messages and parts.

        A running turn is aborted and awaited, and pending permission
        requests are rejected first.
        """
        info = await self.get(session_id)
        if info is None:
            return
        running = self._running.get(session_id)
        self.abort(session_id)
        if running is not None and running[1] is not asyncio.current_task():
            await running[0].wait()
        await self.permission.clear_session(session_id)
        for key in await self.storage.list(["message", session_id]):
            await self.storage.remove_tree(["part", key[-1]])
            await self.storage.remove(key)
        await self.storage.remove(_session_key(session_id))
        self._doom.pop(session_id, None)
        log.info("removed", {"session_id": session_id})
        await self.bus.publish(SessionDeleted, SessionInfoProperties(info=info))

    async def messages(self, session_id: str) -> List[MessageWithParts]:
        """Messages of a session in creation order, each with its parts."""
        result: List[MessageWithParts] = []
        for key in sorted(await self.storage.list(["message", session_id]), key=lambda k: k[-1]):
            try:
                info = await self.storage.read(key)
            except NotFoundError:
                continue
            parts = []
            for part_key in sorted(await self.storage.list(["part", key[-1]]), key=lambda k: k[-1]):
                try:
                    parts.append(await self.storage.read(part_key))
                except NotFoundError:
                    continue
            result.append(MessageWithParts.model_validate({"info": info, "parts": parts}))
        return result

    async def remove_message(self, session_id: str, message_id: str) -> None:
        await self.storage.remove_tree(["part", message_id])
        await self.storage.remove(_message_key(session_id, message_id))
        await self.bus.publish(MessageRemoved, MessageRemovedProperties(
            session_id=session_id,
            message_id=message_id,
        ))

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._active

    def abort(self, session_id: str) -> bool:
        """Signal the running turn of ``session_id`` to stop."""
        abort = self._active.pop(session_id, None)
        if abort is None:
            return False
        log.info("aborting", {"session_id": session_id})
        abort.set()
        return True

    def abort_all(self) -> None:
        for abort in self._active.values():
            abort.set()

    def doom_detector(self, session_id: str) -> DoomLoopDetector:
        detector = self._doom.get(session_id)
        if detector is None:
            detector = DoomLoopDetector(
                permission=self.permission,
                session_id=session_id,
                threshold=self.config.session.doom_loop_threshold,
            )
            self._doom[session_id] = detector
        return detector

    def _candidates(self, agent: AgentInfo, model: Optional[str]) -> List[Tuple[str, str]]:
        if model:
            primary = Provider.parse_model(model)
        elif agent.model is not None:
            primary = (agent.model.provider_id, agent.model.model_id)
        else:
            primary = self.provider.default_model(self.config)
        candidates = [primary]
        for ref in self.config.model_fallbacks:
            parsed = Provider.parse_model(ref)
            if parsed not in candidates:
                candidates.append(parsed)
        return candidates

    async def chat(
        self,
        session_id: str,
        text: str,
        *,
        agent: Optional[str] = None,
        model: Optional[str] = None,
        system: Optional[List[str]] = None,
        tools: Optional[Dict[str, bool]] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> ChatResult:
        """Run one user turn.

        Args:
            session_id: Target session; created when it does not exist.
            text: User message.
            agent: Agent name, the configured default when omitted.
            model: ``provider/model`` override.
            system: Extra system prompt sections.
            tools: Per-turn tool switches, ``{"bash": False}`` hides bash.
            abort: External abort event. ``Session.abort`` sets it too.

        Raises:
            BusyError: A turn is already running for this session.
        """
        if session_id in self._active:
            raise BusyError(session_id)
        abort = abort or asyncio.Event()
        done = asyncio.Event()
        self._active[session_id] = abort
        self._running[session_id] = (done, asyncio.current_task())
        try:
            return await self._chat(session_id, text, agent, model, system, tools, abort)
        finally:
            done.set()
            if self._running.get(session_id, (None, None))[0] is done:
                del self._running[session_id]
            if self._active.get(session_id) is abort:
                del self._active[session_id]

    async def _chat(
        self,
        session_id: str,
        text: str,
        agent_name: Optional[str],
        model: Optional[str],
        system: Optional[List[str]],
        tools: Optional[Dict[str, bool]],
        abort: asyncio.Event,
    ) -> ChatResult:
        if await self.get(session_id) is None:
            await self.create(session_id=session_id)

        agent_info = self.agents.get(agent_name or self.agents.default_agent())
        if agent_info is None:
            raise ValueError(f"Unknown agent: {agent_name}")

        history = to_model_messages(await self.messages(session_id))
        user = UserMessage(
            id=Identifier.ascending("message"),
            session_id=session_id,
            text=text,
            agent=agent_info.name,
            model=model,
            system=system,
            tools=tools,
            time=MessageTime(created=_now()),
        )
        await self.storage.write(_message_key(session_id, user.id), user.model_dump(mode="json"))
        await self.bus.publish(MessageUpdated, MessageUpdatedProperties(info=user))
        history.append({"role": "user", "content": text})

        candidates = self._candidates(agent_info, model)
        result = ChatResult()
        for index, (provider_id, model_id) in enumerate(candidates):
            has_fallback = index < len(candidates) - 1
            try:
                model_info = self.provider.get_model(provider_id, model_id)
            except ModelNotFoundError as e:
                if has_fallback:
                    log.warn("skipping unknown fallback model", {"error": str(e)})
                    continue
                result.error = ErrorInfo(**error_info(e))
                await self.bus.publish(SessionError, SessionErrorProperties(session_id=session_id, error=result.error))
                break

            provider_info = self.provider.get_provider(provider_id)
            auth_cfg = self.config.auth
            assistant = AssistantMessage(
                id=Identifier.ascending("message"),
                session_id=session_id,
                agent=agent_info.name,
                provider_id=provider_id,
                model_id=model_id,
                parent_id=user.id,
                time=MessageTime(created=_now()),
            )
            processor = SessionProcessor(
                bus=self.bus,
                storage=self.storage,
                provider=self.provider,
                registry=self.registry,
                permission=self.permission,
                message=assistant,
                agent=agent_info,
                model=model_info,
                rotation=AuthRotation(
                    self.auth,
                    provider_info,
                    model_id,
                    order=auth_cfg.order.get(provider_id),
                    locked=auth_cfg.profile.get(provider_id),
                    fallback_configured=has_fallback,
                ),
                doom=self.doom_detector(session_id),
                retry=SessionRetry(
                    attempts=self.config.session.retry_attempts,
                    base_ms=self.config.session.retry_base_ms,
                    max_ms=self.config.session.retry_max_ms,
                ),
                abort=abort,
                system=[agent_info.prompt or DEFAULT_PROMPT, *(system or [])],
                tools=tools,
                cwd=self.directory,
                fallback_configured=has_fallback,
            )
            try:
                await processor.process(history)
            except FailoverError as e:
                log.warn("trying fallback model", {"failed": f"{provider_id}/{model_id}", "reason": e.reason})
                continue

            result = ChatResult(
                text="\n\n".join(processor.texts),
                error=assistant.error,
                tokens=assistant.tokens,
                message_id=assistant.id,
            )
            break

        try:
            await self.update(session_id, lambda info: None)
        except NotFoundError:
            log.info("session removed during turn", {"session_id": session_id})
        return result
