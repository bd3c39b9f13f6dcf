from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Conversation message roles"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class RunStatus(str, Enum):
    """Durable task run status"""
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class Message(BaseModel):
    """A single conversation message"""
    role: Role
    content: str

    def to_prompt(self) -> Dict[str, str]:
        """Render as an inference message"""
        return {"role": self.role.value, "content": self.content}


class Session(BaseModel):
    """One logical conversation, owned by exactly one session actor"""
    id: str = Field(description="Opaque session identifier")
    messages: List[Message] = Field(default_factory=list)
    active_turn: Optional[str] = Field(None, description="Identifier of the turn currently running")
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)

    def append(self, role: Role, content: str) -> Message:
        """Append a message to the history"""
        message = Message(role=role, content=content)
        self.messages.append(message)
        self.last_activity = utcnow()
        return message

    @property
    def is_idle(self) -> bool:
        return self.active_turn is None


class ToolCall(BaseModel):
    """A capability invocation requested by the model during a turn"""
    id: Optional[str] = Field(None, description="Model-assigned call identifier")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result_summary: str = ""
    succeeded: bool = True


class ResearchParams(BaseModel):
    """Parameters a research run is scheduled with"""
    topic: str
    source_session_id: str
    connection_id: Optional[str] = None


class StepRecord(BaseModel):
    """A completed step in a task run's step log"""
    name: str
    result: Any = None
    completed_at: datetime = Field(default_factory=utcnow)


class TaskRun(BaseModel):
    """One execution (or resumption) of the research pipeline"""
    id: str
    source_session_id: str
    params: ResearchParams
    steps: List[StepRecord] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def completed_steps(self) -> Dict[str, StepRecord]:
        """Index the step log by step name"""
        return {record.name: record for record in self.steps}

    @property
    def is_finished(self) -> bool:
        return self.status in (RunStatus.DONE, RunStatus.FAILED)
