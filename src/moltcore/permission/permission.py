"""Permission engine for tool execution.

Rules are ``(permission, pattern, action)`` triples evaluated last-match-wins.
An ``ask`` outcome parks the caller on a future until a reply arrives through
``Permission.reply``; ``always`` replies are remembered for the rest of the
process.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from ..core.bus import Bus, BusEvent
from ..core.id import Identifier
from ..util.abort import race_abort
from ..util.log import Log
from ..util.wildcard import expand_home, match
from .constants import permission_for_tool

log = Log.create({"service": "permission"})


class PermissionAction(str, Enum):
    """Permission action types."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class PermissionRule(BaseModel):
    """A permission rule."""

    permission: str
    pattern: str
    action: PermissionAction

    model_config = ConfigDict(use_enum_values=True)


Ruleset = List[PermissionRule]


class PermissionRequest(BaseModel):
    """A request waiting for a user decision."""

    id: str
    session_id: str
    permission: str
    patterns: List[str]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    always: List[str] = Field(default_factory=list)
    tool: Optional[Dict[str, str]] = None


class PermissionReply(str, Enum):
    """Permission reply types."""

    ONCE = "once"
    ALWAYS = "always"
    REJECT = "reject"


class PermissionRepliedProperties(BaseModel):
    """Properties for the permission.replied event."""

    session_id: str
    request_id: str
    reply: PermissionReply


PermissionAsked = BusEvent.define("permission.asked", PermissionRequest)
PermissionReplied = BusEvent.define("permission.replied", PermissionRepliedProperties)


class RejectedError(Exception):
    """User rejected permission without a message."""

    def __init__(self):
        super().__init__("The user rejected permission to use this specific tool call.")


class CorrectedError(Exception):
    """User rejected permission with guidance."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(
            f"The user rejected permission to use this specific tool call "
            f"with the following feedback: {message}"
        )


class DeniedError(Exception):
    """Permission denied by a configured rule."""

    def __init__(self, ruleset: Ruleset):
        self.ruleset = ruleset
        rendered = [rule.model_dump() for rule in ruleset]
        super().__init__(
            f"The user has specified a rule which prevents you from using "
            f"this specific tool call. Relevant rules: {rendered}"
        )


def merge(*rulesets: Ruleset) -> Ruleset:
    """Concatenate rulesets, later ones taking precedence."""
    result: Ruleset = []
    for ruleset in rulesets:
        result.extend(ruleset)
    return result


def evaluate(permission: str, pattern: str, *rulesets: Ruleset) -> PermissionRule:
    """Return the last rule matching both ``permission`` and ``pattern``.

    Falls back to an ``ask`` rule when nothing matches.
    """
    merged = merge(*rulesets)
    for rule in reversed(merged):
        if match(permission, rule.permission) and match(pattern, rule.pattern):
            return rule
    return PermissionRule(permission=permission, pattern="*", action=PermissionAction.ASK)


def from_config(config: Union[str, Dict[str, Any], List[Dict[str, Any]], None]) -> Ruleset:
    """Build a ruleset from config.

    Accepted shapes:
        ``"allow"``: one rule for every permission and pattern.
        ``{"bash": "ask", "read": {"*.env": "deny"}}``: per permission, either a
        single action or a pattern map.
        ``[{"permission": ..., "pattern": ..., "action": ...}]``: explicit rules.
    """
    if config is None:
        return []
    if isinstance(config, str):
        return [PermissionRule(permission="*", pattern="*", action=PermissionAction(config))]
    if isinstance(config, list):
        return from_config_list(config)

    ruleset: Ruleset = []
    for key, value in config.items():
        if isinstance(value, str):
            ruleset.append(PermissionRule(permission=key, pattern="*", action=PermissionAction(value)))
        elif isinstance(value, dict):
            for pattern, action in value.items():
                ruleset.append(PermissionRule(
                    permission=key,
                    pattern=expand_home(pattern),
                    action=PermissionAction(action),
                ))
        else:
            raise ValueError(f"Invalid permission entry for {key!r}: {value!r}")
    return ruleset


def from_config_list(rules: List[Dict[str, Any]]) -> Ruleset:
    """Convert ``{permission, pattern?, action}`` dicts into rules."""
    return [
        PermissionRule(
            permission=r["permission"],
            pattern=expand_home(r.get("pattern", "*")),
            action=PermissionAction(r["action"]),
        )
        for r in rules
    ]


def disabled_tools(tools: List[str], ruleset: Ruleset) -> Set[str]:
    """Tools whose permission key is blanket-denied by the last matching rule."""
    result: Set[str] = set()
    for tool in tools:
        permission = permission_for_tool(tool)
        for rule in reversed(ruleset):
            if match(permission, rule.permission):
                if rule.pattern == "*" and rule.action == PermissionAction.DENY:
                    result.add(tool)
                break
    return result


class Permission:
    """Pending requests and remembered approvals for one runtime."""

    @dataclass
    class _Pending:
        request: PermissionRequest
        future: asyncio.Future[None]

    merge = staticmethod(merge)
    evaluate = staticmethod(evaluate)
    from_config = staticmethod(from_config)
    from_config_list = staticmethod(from_config_list)
    disabled_tools = staticmethod(disabled_tools)

    def __init__(self, bus: Bus) -> None:
        self._bus = bus
        self._pending: Dict[str, Permission._Pending] = {}
        self._pending_guard = asyncio.Lock()
        self._approved: Ruleset = []

    def approved(self) -> Ruleset:
        """Allow rules added by ``always`` replies, oldest first."""
        return list(self._approved)

    async def ask(
        self,
        session_id: str,
        permission: str,
        patterns: List[str],
        ruleset: Ruleset,
        always: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        tool: Optional[Dict[str, str]] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> None:
        """Check ``patterns`` and wait for the user when a rule says ``ask``.

        Args:
            session_id: Session the request belongs to.
            permission: Permission key, e.g. ``"bash"``.
            patterns: Values checked against rule patterns.
            ruleset: Rules of the active agent.
            always: Patterns remembered if the user answers ``always``.
            metadata: Extra context shown to the user.
            request_id: Explicit request id.
            tool: ``{"message_id", "call_id"}`` of the tool call asking.
            abort: Turn abort event. Setting it withdraws the request.

        Raises:
            DeniedError: A rule denies one of the patterns.
            RejectedError: The user rejected the request.
            CorrectedError: The user rejected the request with feedback.
            AbortedError: ``abort`` fired while waiting.
        """
        for pattern in patterns:
            rule = evaluate(permission, pattern, ruleset, self._approved)
            log.debug("evaluated", {"permission": permission, "pattern": pattern, "action": rule.action})

            if rule.action == PermissionAction.DENY:
                raise DeniedError([r for r in ruleset if match(permission, r.permission)])

            if rule.action == PermissionAction.ASK:
                await self._wait(PermissionRequest(
                    id=request_id or Identifier.ascending("permission"),
                    session_id=session_id,
                    permission=permission,
                    patterns=patterns,
                    metadata=metadata or {},
                    always=always or [],
                    tool=tool,
                ), abort)
                return

    async def _wait(self, request: PermissionRequest, abort: Optional[asyncio.Event]) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        item = Permission._Pending(request=request, future=future)
        async with self._pending_guard:
            self._pending[request.id] = item

        try:
            await self._bus.publish(PermissionAsked, request)
            await race_abort(future, abort)
        finally:
            if self._pending.get(request.id) is item:
                del self._pending[request.id]
                log.info("withdrew permission request", {"id": request.id, "session_id": request.session_id})

    @staticmethod
    def _settle(item: "Permission._Pending", error: Optional[Exception] = None) -> None:
        if item.future.done():
            return
        if error is None:
            item.future.set_result(None)
        else:
            item.future.set_exception(error)

    async def _replied(self, session_id: str, request_id: str, reply: PermissionReply) -> None:
        await self._bus.publish(PermissionReplied, PermissionRepliedProperties(
            session_id=session_id,
            request_id=request_id,
            reply=reply,
        ))

    async def reply(
        self,
        request_id: str,
        reply: Union[PermissionReply, str],
        message: Optional[str] = None,
    ) -> None:
        """Answer a pending request.

        ``reject`` also rejects every other pending request of the session.
        ``always`` remembers the request's ``always`` patterns, then resolves
        other pending requests of the session that those rules now allow.
        Unknown request ids are ignored.
        """
        reply = PermissionReply(reply)
        async with self._pending_guard:
            item = self._pending.pop(request_id, None)
        if item is None:
            log.warn("reply for unknown permission request", {"id": request_id})
            return

        session_id = item.request.session_id
        await self._replied(session_id, request_id, reply)

        if reply == PermissionReply.REJECT:
            self._settle(item, CorrectedError(message) if message else RejectedError())

            async with self._pending_guard:
                cascade = [
                    self._pending.pop(rid)
                    for rid, other in list(self._pending.items())
                    if other.request.session_id == session_id
                ]
            for other in cascade:
                await self._replied(session_id, other.request.id, PermissionReply.REJECT)
                self._settle(other, RejectedError())
            return

        if reply == PermissionReply.ONCE:
            self._settle(item)
            return

        self._approved.extend(
            PermissionRule(permission=item.request.permission, pattern=pattern, action=PermissionAction.ALLOW)
            for pattern in item.request.always
        )
        self._settle(item)

        async with self._pending_guard:
            resolved = [
                self._pending.pop(rid)
                for rid, other in list(self._pending.items())
                if other.request.session_id == session_id and self._passes(other.request)
            ]
        for other in resolved:
            await self._replied(session_id, other.request.id, PermissionReply.ALWAYS)
            self._settle(other)

    def _passes(self, request: PermissionRequest) -> bool:
        return all(
            evaluate(request.permission, pattern, self._approved).action == PermissionAction.ALLOW
            for pattern in request.patterns
        )

    async def list_pending(self, session_id: Optional[str] = None) -> List[PermissionRequest]:
        """Pending requests in registration order."""
        async with self._pending_guard:
            return [
                item.request for item in self._pending.values()
                if session_id is None or item.request.session_id == session_id
            ]

    async def clear_session(self, session_id: str) -> None:
        """Reject and drop every pending request of a session."""
        async with self._pending_guard:
            request_ids = [rid for rid, item in self._pending.items() if item.request.session_id == session_id]
            pending = [self._pending.pop(rid) for rid in request_ids]
        for item in pending:
            await self._replied(session_id, item.request.id, PermissionReply.REJECT)
            self._settle(item, RejectedError())

    async def shutdown(self) -> None:
        async with self._pending_guard:
            pending = list(self._pending.values())
            self._pending.clear()
        for item in pending:
            self._settle(item, RejectedError())
        self._approved.clear()
