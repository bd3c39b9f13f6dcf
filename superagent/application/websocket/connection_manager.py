from typing import Any, Callable, Dict, Iterable, Optional
from fastapi import WebSocket
import asyncio
from datetime import datetime, timezone
from uuid import uuid4
import structlog

from .schema.events import BaseEvent, ErrorEvent, InfoEvent

logger = structlog.get_logger(__name__)

GREETING = "Agent online ⚡️"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionManager:
    """Manages WebSocket connections and message routing.

    A session may have several connections attached at once (e.g. two
    browser tabs); every connection has its own id.
    """

    def __init__(self, stale_after_seconds: int = 300):
        self.active_connections: Dict[str, Dict[str, WebSocket]] = {}
        self.connection_metadata: Dict[str, Dict[str, Any]] = {}
        self.stale_after_seconds = stale_after_seconds
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str) -> str:
        """Accept a new WebSocket connection and return its connection id"""
        await websocket.accept()
        connection_id = uuid4().hex

        async with self._lock:
            self.active_connections.setdefault(session_id, {})[connection_id] = websocket
            self.connection_metadata[connection_id] = {
                "session_id": session_id,
                "connected_at": _now(),
                "last_activity": _now()
            }

        # Send connection greeting
        await self.send_event(session_id, connection_id, InfoEvent(content=GREETING))

        logger.info("WebSocket connected", session_id=session_id, connection_id=connection_id)
        return connection_id

    async def disconnect(self, session_id: str, connection_id: str, close: bool = True):
        """Detach a connection from its session, closing the socket if asked"""
        async with self._lock:
            connections = self.active_connections.get(session_id, {})
            ws = connections.pop(connection_id, None)
            if not connections:
                self.active_connections.pop(session_id, None)
            self.connection_metadata.pop(connection_id, None)

        if ws is not None and close:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing WebSocket", session_id=session_id, error=str(e))

        logger.info("WebSocket disconnected", session_id=session_id, connection_id=connection_id)

    async def send_event(self, session_id: str, connection_id: str, event: BaseEvent) -> bool:
        """Send an event to one connection of a session"""
        websocket = self.active_connections.get(session_id, {}).get(connection_id)
        if websocket is None:
            logger.debug("Attempted to send to detached connection", session_id=session_id, connection_id=connection_id)
            return False

        try:
            await websocket.send_json(event.to_wire())

            # Update last activity
            if connection_id in self.connection_metadata:
                self.connection_metadata[connection_id]["last_activity"] = _now()

            return True

        except Exception as e:
            logger.warning("Failed to send event", session_id=session_id, connection_id=connection_id, error=str(e))
            await self.disconnect(session_id, connection_id, close=False)
            return False

    def touch(self, connection_id: str):
        """Record inbound activity on a connection"""
        if connection_id in self.connection_metadata:
            self.connection_metadata[connection_id]["last_activity"] = _now()

    async def broadcast(self, session_id: str, event: BaseEvent) -> int:
        """Send an event to every connection attached to a session; returns deliveries"""
        delivered = 0
        for connection_id in list(self.active_connections.get(session_id, {})):
            if await self.send_event(session_id, connection_id, event):
                delivered += 1
        return delivered

    async def send_error(self, session_id: str, connection_id: str, error_message: str):
        """Send an error event to a connection"""
        await self.send_event(session_id, connection_id, ErrorEvent(content=error_message))

    def connection_count(self, session_id: Optional[str] = None) -> int:
        """Number of attached connections, for one session or overall"""
        if session_id is not None:
            return len(self.active_connections.get(session_id, {}))
        return len(self.connection_metadata)

    async def close_all(self):
        for session_id, connections in list(self.active_connections.items()):
            for connection_id in list(connections):
                await self.disconnect(session_id, connection_id)

    async def sweep_stale(self, busy_sessions: Iterable[str] = ()) -> int:
        """Disconnect connections idle longer than ``stale_after_seconds``.

        Connections of a session in ``busy_sessions`` count as active, so a
        client waiting on a background run keeps its socket.
        """
        current_time = _now()
        busy = set(busy_sessions)

        stale = []
        for connection_id, metadata in list(self.connection_metadata.items()):
            if metadata["session_id"] in busy:
                metadata["last_activity"] = current_time
            elif (current_time - metadata["last_activity"]).total_seconds() > self.stale_after_seconds:
                stale.append((metadata["session_id"], connection_id))

        for session_id, connection_id in stale:
            logger.warning("Disconnecting stale connection", session_id=session_id, connection_id=connection_id)
            await self.disconnect(session_id, connection_id)
        return len(stale)

    async def health_check(
        self,
        interval_seconds: int = 60,
        busy_sessions: Optional[Callable[[], Iterable[str]]] = None
    ):
        """Periodic health check to clean up stale connections"""
        while True:
            try:
                await self.sweep_stale(busy_sessions() if busy_sessions else ())
            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(interval_seconds)
