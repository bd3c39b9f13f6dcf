"""Collaborator interfaces consumed by the agent core.

The concrete adapters live under ``superagent.infrastructure``; tests swap in
fakes that satisfy the same protocols.
"""
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from superagent.domain.models.agent_state import ResearchParams, RunStatus, TaskRun


class TextFragment(BaseModel):
    """A piece of assistant text streamed by the model"""
    text: str


class ToolCallRequest(BaseModel):
    """A capability call requested by the model"""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


StreamItem = Union[TextFragment, ToolCallRequest]


class VectorEntry(BaseModel):
    id: str
    vector: List[float]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StoredObject(BaseModel):
    name: str
    data: bytes
    content_type: str


class Inference(Protocol):
    async def complete(self, messages: Sequence[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> str:
        ...

    def stream_complete(
        self, messages: Sequence[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[StreamItem]:
        ...

    async def embed(self, text: str) -> List[float]:
        ...

    async def image_from_prompt(self, prompt: str) -> bytes:
        ...

    async def document_to_text(self, data: bytes, content_type: str) -> str:
        ...


class VectorIndex(Protocol):
    async def upsert(self, entries: Sequence[VectorEntry]) -> None:
        ...

    async def query(self, vector: Sequence[float], top_k: int) -> List[VectorMatch]:
        ...


class ObjectStore(Protocol):
    async def put(self, name: str, data: bytes, content_type: str) -> None:
        ...

    async def get(self, name: str) -> Optional[StoredObject]:
        ...

    async def list(self) -> List[str]:
        ...


class Browser(Protocol):
    async def fetch_visible_text(self, url: str) -> str:
        ...


class TaskScheduler(Protocol):
    async def schedule(self, params: ResearchParams) -> str:
        ...


class StepLog(Protocol):
    async def create_run(self, run: TaskRun) -> None:
        ...

    async def get_run(self, run_id: str) -> Optional[TaskRun]:
        ...

    async def record_step(self, run_id: str, step_name: str, result: Any) -> None:
        ...

    async def set_status(self, run_id: str, status: RunStatus, error: Optional[str] = None) -> None:
        ...

    async def unfinished_runs(self) -> List[TaskRun]:
        ...
