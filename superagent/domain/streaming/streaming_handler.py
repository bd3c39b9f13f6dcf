from typing import Awaitable, Callable
import structlog

from superagent.application.websocket.connection_manager import ConnectionManager
from superagent.application.websocket.schema.events import BaseEvent, StopEvent, TextEvent

logger = structlog.get_logger(__name__)

EventEmitter = Callable[[BaseEvent], Awaitable[bool]]

RESEARCH_UPDATE_PREFIX = "\n\n🔔 **Research Update:**\n"


class StreamingHandler:
    """Handles real-time streaming of agent events to WebSocket clients"""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager

    def emitter_for(self, session_id: str, connection_id: str) -> EventEmitter:
        """Event sink that writes to the one connection a turn was started from"""

        async def emit(event: BaseEvent) -> bool:
            # Tokens go out one by one; no batching
            return await self.connection_manager.send_event(session_id, connection_id, event)

        return emit

    async def deliver_notification(self, session_id: str, content: str) -> int:
        """Push a synthetic assistant message plus ``stop`` to every attached connection.

        Returns the number of connections that received the message. Nothing
        is queued for connections that attach later.
        """

        delivered = await self.connection_manager.broadcast(
            session_id,
            TextEvent(content=f"{RESEARCH_UPDATE_PREFIX}{content}")
        )
        if delivered:
            await self.connection_manager.broadcast(session_id, StopEvent())
        else:
            logger.info("No attached connection, research notification dropped", session_id=session_id)

        return delivered
