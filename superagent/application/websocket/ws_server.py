from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
from datetime import datetime, timezone
import asyncio
import json
import structlog
from pydantic import ValidationError

from .schema.events import UserMessage
from superagent.application.api.route import documents, research
from superagent.application.runtime import AgentRuntime
from superagent.infrastructure.config.settings import Settings
from superagent.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, runtime: Optional[AgentRuntime] = None) -> FastAPI:
    """Build the agent service.

    ``runtime`` is normally built at startup from ``settings`` (or the
    environment); tests pass a runtime wired with fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = runtime.settings if runtime is not None else (settings or Settings.from_env())
        setup_logging(resolved.log_level, resolved.log_format)

        agent_runtime = runtime or AgentRuntime(resolved)
        app.state.runtime = agent_runtime
        await agent_runtime.start()

        # Start connection health check
        health_task = asyncio.create_task(
            agent_runtime.connection_manager.health_check(busy_sessions=agent_runtime.task_engine.busy_sessions)
        )
        logger.info("WebSocket server started")

        try:
            yield
        finally:
            health_task.cancel()
            await asyncio.gather(health_task, return_exceptions=True)
            await agent_runtime.shutdown()
            logger.info("WebSocket server shutdown")

    app = FastAPI(title="Agent WebSocket Server", lifespan=lifespan)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(documents.router)
    app.include_router(research.router)

    @app.websocket("/ws/agent/{session_id}")
    async def agent_websocket(websocket: WebSocket, session_id: str):
        """Main WebSocket endpoint for agent interaction"""

        agent_runtime: AgentRuntime = websocket.app.state.runtime
        connections = agent_runtime.connection_manager

        actor = agent_runtime.directory.get_or_create(session_id)
        connection_id = await connections.connect(websocket, session_id)

        try:
            # Main message loop
            while True:
                raw = await websocket.receive_text()
                connections.touch(connection_id)

                try:
                    message = UserMessage.model_validate(json.loads(raw))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Malformed inbound message", session_id=session_id, error=str(e))
                    await connections.send_error(session_id, connection_id, "Invalid message: expected {\"prompt\": \"...\"}")
                    continue

                # Turns for one session run one at a time inside the actor
                await actor.submit_prompt(message.prompt, connection_id)

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id, connection_id=connection_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=session_id, connection_id=connection_id)
        finally:
            await connections.disconnect(session_id, connection_id, close=False)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        agent_runtime: AgentRuntime = app.state.runtime
        return {
            "status": "healthy",
            "active_connections": agent_runtime.connection_manager.connection_count(),
            "sessions": len(agent_runtime.directory),
            "active_research_runs": agent_runtime.task_engine.active_runs,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return app


app = create_app()


def main():
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("superagent.application.websocket.ws_server:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
