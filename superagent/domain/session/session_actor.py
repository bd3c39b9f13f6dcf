from typing import Optional, Union
import asyncio
import structlog
from pydantic import BaseModel, ConfigDict

from superagent.domain.models.agent_state import Session
from superagent.domain.orchestration.core.main_agent import TurnLoop, TurnResult
from superagent.domain.streaming.streaming_handler import StreamingHandler

logger = structlog.get_logger(__name__)


class PromptItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str
    connection_id: Optional[str] = None
    done: asyncio.Future


class NoticeItem(BaseModel):
    content: str


InboxItem = Union[PromptItem, NoticeItem]


class SessionActor:
    """Single owner of a session's history.

    Prompts and research notices go through one inbox and are handled one at
    a time by a single worker task, so a turn's events are never interleaved
    with another turn's or with a notification.
    """

    def __init__(self, session_id: str, turn_loop: TurnLoop, streaming: StreamingHandler):
        self.session = Session(id=session_id)
        self.turn_loop = turn_loop
        self.streaming = streaming
        self._inbox: "asyncio.Queue[InboxItem]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        if self.running:
            return
        self._worker = asyncio.create_task(self._consume(), name=f"session-{self.session_id}")
        logger.debug("Session actor started", session_id=self.session_id)

    async def stop(self):
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

        # Fail whatever is still queued so no caller waits forever
        while not self._inbox.empty():
            item = self._inbox.get_nowait()
            if isinstance(item, PromptItem) and not item.done.done():
                item.done.cancel()

        logger.debug("Session actor stopped", session_id=self.session_id)

    def submit_prompt(self, prompt: str, connection_id: Optional[str] = None) -> "asyncio.Future[TurnResult]":
        """Queue a user message; the returned future resolves when its turn ends"""
        self.start()
        done = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(PromptItem(prompt=prompt, connection_id=connection_id, done=done))
        return done

    def notify(self, content: str):
        """Queue a research notification for every attached connection"""
        self.start()
        self._inbox.put_nowait(NoticeItem(content=content))

    async def _consume(self):
        while True:
            item = await self._inbox.get()
            try:
                if isinstance(item, PromptItem):
                    await self._handle_prompt(item)
                else:
                    await self.streaming.deliver_notification(self.session_id, item.content)
            except asyncio.CancelledError:
                if isinstance(item, PromptItem) and not item.done.done():
                    item.done.cancel()
                raise
            except Exception as e:
                logger.error("Session actor failed to handle inbox item", session_id=self.session_id, error=str(e), exc_info=True)
                if isinstance(item, PromptItem) and not item.done.done():
                    item.done.set_exception(e)
            finally:
                self._inbox.task_done()

    async def _handle_prompt(self, item: PromptItem):
        if item.connection_id is not None:
            emit = self.streaming.emitter_for(self.session_id, item.connection_id)
        else:
            emit = self._broadcast

        result = await self.turn_loop.run(self.session, item.prompt, emit, connection_id=item.connection_id)
        if not item.done.done():
            item.done.set_result(result)

    async def _broadcast(self, event) -> bool:
        return await self.streaming.connection_manager.broadcast(self.session_id, event) > 0
