from datetime import timedelta

import pytest

from superagent.application.websocket.connection_manager import GREETING, ConnectionManager
from superagent.application.websocket.schema.events import InfoEvent
from tests.conftest import FakeWebSocket


def age(manager, connection_id, seconds):
    manager.connection_metadata[connection_id]["last_activity"] -= timedelta(seconds=seconds)


@pytest.mark.asyncio
async def test_connect_sends_greeting():
    manager = ConnectionManager()
    ws = FakeWebSocket()

    connection_id = await manager.connect(ws, "session-1")

    assert ws.accepted
    assert ws.sent == [{"type": "info", "content": GREETING}]
    assert manager.connection_count("session-1") == 1
    assert connection_id in manager.connection_metadata


@pytest.mark.asyncio
async def test_sweep_disconnects_idle_connections():
    manager = ConnectionManager(stale_after_seconds=300)
    idle_ws, fresh_ws = FakeWebSocket(), FakeWebSocket()
    idle = await manager.connect(idle_ws, "session-1")
    await manager.connect(fresh_ws, "session-2")
    age(manager, idle, 301)

    assert await manager.sweep_stale() == 1

    assert idle_ws.closed
    assert not fresh_ws.closed
    assert manager.connection_count("session-1") == 0
    assert manager.connection_count("session-2") == 1


@pytest.mark.asyncio
async def test_sweep_keeps_connections_waiting_on_a_research_run():
    manager = ConnectionManager(stale_after_seconds=300)
    ws = FakeWebSocket()
    connection_id = await manager.connect(ws, "session-1")
    age(manager, connection_id, 3600)

    assert await manager.sweep_stale(busy_sessions={"session-1"}) == 0
    assert not ws.closed

    # The wait counted as activity; once the run is over the idle clock starts again
    assert await manager.sweep_stale() == 0
    age(manager, connection_id, 301)
    assert await manager.sweep_stale() == 1
    assert ws.closed


@pytest.mark.asyncio
async def test_broadcast_drops_failed_connections():
    manager = ConnectionManager()
    good, broken = FakeWebSocket(), FakeWebSocket()
    await manager.connect(good, "session-1")
    await manager.connect(broken, "session-1")
    broken.fail_sends = True

    delivered = await manager.broadcast(session_id="session-1", event=InfoEvent(content="hello"))

    assert delivered == 1
    assert good.sent[-1] == {"type": "info", "content": "hello"}
    assert manager.connection_count("session-1") == 1

