"""Sessions, messages and the turn loop."""

from .doom_loop import DoomLoopDetector
from .events import (
    MessagePartUpdated,
    MessageRemoved,
    MessageUpdated,
    SessionCreated,
    SessionDeleted,
    SessionError,
    SessionInfo,
    SessionUpdated,
)
from .message import (
    AssistantMessage,
    ErrorInfo,
    MessageWithParts,
    TokenUsage,
    ToolPart,
    UserMessage,
    to_model_messages,
)
from .processor import ContextOverflowError, SessionProcessor, StreamError
from .retry import SessionRetry
from .session import BusyError, ChatResult, Session

__all__ = [
    "AssistantMessage",
    "BusyError",
    "ChatResult",
    "ContextOverflowError",
    "DoomLoopDetector",
    "ErrorInfo",
    "MessagePartUpdated",
    "MessageRemoved",
    "MessageUpdated",
    "MessageWithParts",
    "Session",
    "SessionCreated",
    "SessionDeleted",
    "SessionError",
    "SessionInfo",
    "SessionProcessor",
    "SessionRetry",
    "SessionUpdated",
    "StreamError",
    "TokenUsage",
    "ToolPart",
    "UserMessage",
    "to_model_messages",
]
