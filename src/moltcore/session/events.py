"""Session event definitions and property models.

All BusEvent instances related to session and message lifecycle are defined
here so they can be imported without pulling in the Session class.
"""

from typing import Optional

from pydantic import BaseModel

from ..core.bus import BusEvent
from .message import ErrorInfo, MessageInfo, Part


class SessionTime(BaseModel):
    created: int
    updated: int


class SessionInfo(BaseModel):
    """Session record."""
    id: str
    title: str
    parent_id: Optional[str] = None
    directory: Optional[str] = None
    time: SessionTime


class SessionInfoProperties(BaseModel):
    info: SessionInfo


class SessionErrorProperties(BaseModel):
    session_id: Optional[str] = None
    error: ErrorInfo


class MessageUpdatedProperties(BaseModel):
    info: MessageInfo


class MessagePartUpdatedProperties(BaseModel):
    part: Part
    delta: Optional[str] = None


class MessageRemovedProperties(BaseModel):
    session_id: str
    message_id: str


SessionCreated = BusEvent.define("session.created", SessionInfoProperties)
SessionUpdated = BusEvent.define("session.updated", SessionInfoProperties)
SessionDeleted = BusEvent.define("session.deleted", SessionInfoProperties)
SessionError = BusEvent.define("session.error", SessionErrorProperties)
MessageUpdated = BusEvent.define("message.updated", MessageUpdatedProperties)
MessagePartUpdated = BusEvent.define("message.part.updated", MessagePartUpdatedProperties)
MessageRemoved = BusEvent.define("message.removed", MessageRemovedProperties)
