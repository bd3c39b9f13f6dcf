"""
Pytest configuration and shared fakes for the superagent test suite.

Every external collaborator of the agent core (model, vector index, object
store, browser, scheduler, websocket) has an in-memory stand-in here.
"""
import asyncio
import math
from typing import Any, Dict, List, Optional

import pytest

from superagent.application.runtime import AgentRuntime
from superagent.domain.ports import StoredObject, TextFragment, VectorMatch
from superagent.infrastructure.config.settings import Settings
from superagent.infrastructure.storage.step_log import SqliteStepLog

pytest_plugins = ["pytest_asyncio"]


def letter_histogram(text: str) -> List[float]:
    """26-dim bag of letters; similar wording gives similar vectors"""
    counts = [0.0] * 26
    for ch in text.lower():
        if "a" <= ch <= "z":
            counts[ord(ch) - ord("a")] += 1.0
    return counts


class FakeInference:
    """Scriptable model.

    ``stream_script`` holds one list of stream items per streaming pass; once
    it is exhausted every pass replies with ``default_reply``. Set
    ``stream_error`` to make streaming fail, or ``complete_hook`` to control
    ``complete`` (it receives the messages and returns the reply).
    """

    def __init__(self, stream_script=None, default_reply: str = "Hello there!"):
        self.stream_script: List[List[Any]] = list(stream_script or [])
        self.default_reply = default_reply
        self.stream_error: Optional[BaseException] = None
        self.stream_calls: List[Dict[str, Any]] = []
        self.complete_hook = None
        self.complete_calls: List[List[Dict[str, Any]]] = []
        self.embed_error: Optional[BaseException] = None
        self.embed_calls: List[str] = []
        self.image_prompts: List[str] = []
        self.documents: List[str] = []

    async def complete(self, messages, tools=None) -> str:
        self.complete_calls.append(list(messages))
        if self.complete_hook is not None:
            return await self.complete_hook(list(messages))
        return f"completion #{len(self.complete_calls)}"

    async def stream_complete(self, messages, tools=None):
        self.stream_calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        if self.stream_error is not None:
            raise self.stream_error

        items = self.stream_script.pop(0) if self.stream_script else [TextFragment(text=self.default_reply)]
        for item in items:
            # Give other tasks a chance to interleave
            await asyncio.sleep(0)
            yield item

    async def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return letter_histogram(text)

    async def image_from_prompt(self, prompt: str) -> bytes:
        self.image_prompts.append(prompt)
        return b"\x89PNG fake image"

    async def document_to_text(self, data: bytes, content_type: str) -> str:
        self.documents.append(content_type)
        return f"extracted text from {content_type}"


class FakeVectorIndex:
    def __init__(self):
        self.entries: Dict[str, Any] = {}
        self.upsert_calls = 0
        self.fail_after: Optional[int] = None
        self.query_error: Optional[BaseException] = None

    async def upsert(self, entries) -> None:
        if self.fail_after is not None and self.upsert_calls >= self.fail_after:
            raise RuntimeError("vector index unavailable")
        self.upsert_calls += 1
        for entry in entries:
            self.entries[entry.id] = entry

    async def query(self, vector, top_k: int) -> List[VectorMatch]:
        if self.query_error is not None:
            raise self.query_error

        def cosine(a, b):
            norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
            return sum(x * y for x, y in zip(a, b)) / norm if norm else 0.0

        matches = [
            VectorMatch(id=entry.id, score=cosine(vector, entry.vector), metadata=dict(entry.metadata))
            for entry in self.entries.values()
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]


class FakeObjectStore:
    def __init__(self):
        self.objects: Dict[str, StoredObject] = {}
        self.list_calls = 0

    async def put(self, name: str, data: bytes, content_type: str) -> None:
        self.objects[name] = StoredObject(name=name, data=data, content_type=content_type)

    async def get(self, name: str) -> Optional[StoredObject]:
        return self.objects.get(name)

    async def list(self) -> List[str]:
        self.list_calls += 1
        return sorted(self.objects)


class FakeBrowser:
    def __init__(self, text: str = "Top result: Python 3.13 released", error: Optional[BaseException] = None, delay: float = 0):
        self.text = text
        self.error = error
        self.delay = delay
        self.urls: List[str] = []

    async def fetch_visible_text(self, url: str) -> str:
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class FakeScheduler:
    def __init__(self):
        self.scheduled = []

    async def schedule(self, params) -> str:
        self.scheduled.append(params)
        return f"run-{len(self.scheduled)}"


class FakeWebSocket:
    """Records frames sent by the ConnectionManager"""

    def __init__(self, fail_sends: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed = False
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self):
        self.closed = True


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        rewrite_image_prompts=False,
        task_backoff_seconds=0,
        log_format="console"
    )


@pytest.fixture
def runtime(settings, inference, vector_index, object_store, browser):
    return AgentRuntime(
        settings,
        inference=inference,
        vector_index=vector_index,
        object_store=object_store,
        browser=browser,
        step_log=SqliteStepLog(settings.step_log_path)
    )
