"""Tool contract.

A tool declares a pydantic parameter model and an async ``execute``. Arguments
from the model are validated before execution; a validation failure is
reported back to the model so it can repair its own call.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .schema import strictify_schema

if TYPE_CHECKING:
    from ..permission import Permission, PermissionRule

T = TypeVar("T", bound=BaseModel)


class ToolValidationError(ValueError):
    """Tool arguments did not match the declared schema."""

    def __init__(self, tool_id: str, detail: Any):
        self.tool_id = tool_id
        super().__init__(
            f"The {tool_id} tool was called with invalid arguments: {detail}.\n"
            "Please rewrite the input so it satisfies the expected schema."
        )


@dataclass
class ToolContext:
    """Context handed to every tool execution."""

    session_id: str
    message_id: str
    agent: str
    call_id: Optional[str] = None
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    extra: Dict[str, Any] = field(default_factory=dict)
    _metadata: Dict[str, Any] = field(default_factory=dict)
    _on_metadata: Optional[Callable[[Dict[str, Any]], None]] = None
    _ruleset: List["PermissionRule"] = field(default_factory=list)
    _permission: Optional["Permission"] = None

    def metadata(self, title: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Stream a progress update for the running tool part."""
        if title:
            self._metadata["title"] = title
        if metadata:
            self._metadata.update(metadata)
        if self._on_metadata:
            self._on_metadata(dict(self._metadata))

    async def ask(
        self,
        permission: str,
        patterns: List[str],
        always: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Ask the permission engine about this call.

        Raises:
            DeniedError: A rule denies the request.
            RejectedError: The user rejected the request.
            CorrectedError: The user rejected the request with feedback.
            AbortedError: The turn was aborted while waiting.
        """
        if self._permission is None:
            raise RuntimeError("ToolContext has no permission engine attached")

        tool = None
        if self.call_id:
            tool = {"message_id": self.message_id, "call_id": self.call_id}

        await self._permission.ask(
            session_id=self.session_id,
            permission=permission,
            patterns=patterns,
            ruleset=self._ruleset,
            always=always,
            metadata=metadata,
            tool=tool,
            abort=self.abort,
        )

    @property
    def aborted(self) -> bool:
        return self.abort.is_set()


@dataclass
class ToolResult:
    """Result returned from tool execution."""

    title: str
    output: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    attachments: List[Dict[str, Any]] = field(default_factory=list)


class ToolInfo(ABC, Generic[T]):
    """Base class for tool definitions.

    Example:
        class EchoTool(ToolInfo[EchoParams]):
            id = "echo"
            description = "Repeat the input"
            parameters_type = EchoParams

            async def execute(self, args: EchoParams, ctx: ToolContext) -> ToolResult:
                return ToolResult(title="echo", output=args.text)
    """

    id: str
    description: str
    parameters_type: Type[T]
    auto_truncate: bool = True

    def schema(self) -> Dict[str, Any]:
        return strictify_schema(self.parameters_type.model_json_schema())

    def describe(self) -> Dict[str, Any]:
        """Function-calling definition sent to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.id,
                "description": self.description,
                "parameters": self.schema(),
            },
        }

    def parse(self, args: Any) -> T:
        """Validate raw arguments.

        Raises:
            ToolValidationError: The arguments do not fit the schema.
        """
        if isinstance(args, self.parameters_type):
            return args
        try:
            return self.parameters_type.model_validate(args or {})
        except ValidationError as e:
            raise ToolValidationError(self.id, e) from e

    @abstractmethod
    async def execute(self, args: T, ctx: ToolContext) -> ToolResult:
        raise NotImplementedError


ExecuteFn = Callable[[Any, ToolContext], Awaitable[ToolResult]]


class Tool:
    """Factory for function-backed tools."""

    @staticmethod
    def define(
        tool_id: str,
        description: str,
        parameters_type: Type[T],
        execute_fn: ExecuteFn,
        auto_truncate: bool = True,
    ) -> ToolInfo[T]:
        """Define a tool from a parameter model and a coroutine.

        Args:
            tool_id: Unique tool identifier.
            description: Description shown to the model.
            parameters_type: Pydantic model for the arguments.
            execute_fn: ``async (args, ctx) -> ToolResult``.
            auto_truncate: Apply generic output truncation. Tools that paginate
                their own output pass False.
        """
        _tool_id = tool_id
        _description = description
        _parameters_type = parameters_type
        _auto_truncate = auto_truncate

        class FunctionalTool(ToolInfo[T]):
            id = _tool_id
            description = _description
            parameters_type = _parameters_type
            auto_truncate = _auto_truncate

            async def execute(self, args: T, ctx: ToolContext) -> ToolResult:
                return await execute_fn(self.parse(args), ctx)

        return FunctionalTool()
