from typing import Any, Dict, Optional, Literal
from pydantic import BaseModel, Field
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types sent to clients"""
    TEXT = "text"
    STATUS = "status"
    INFO = "info"
    ERROR = "error"
    STOP = "stop"


class BaseEvent(BaseModel):
    """Base event model for all outbound WebSocket messages"""
    type: EventType
    content: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class TextEvent(BaseEvent):
    """A streamed fragment of assistant text"""
    type: Literal[EventType.TEXT] = EventType.TEXT
    content: str


class StatusEvent(BaseEvent):
    """Progress note, e.g. which capability is running"""
    type: Literal[EventType.STATUS] = EventType.STATUS
    content: str


class InfoEvent(BaseEvent):
    """Out-of-band information such as the connection greeting"""
    type: Literal[EventType.INFO] = EventType.INFO
    content: str


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    content: str


class StopEvent(BaseEvent):
    """Marks the end of a turn or of a notification"""
    type: Literal[EventType.STOP] = EventType.STOP


class UserMessage(BaseModel):
    """Inbound user message"""
    prompt: str = Field(min_length=1)
