from typing import List, Dict, Any, Optional
from enum import Enum
from uuid import uuid4
import json
import structlog
from pydantic import BaseModel, Field

from superagent.application.websocket.schema.events import ErrorEvent, StatusEvent, StopEvent, TextEvent
from superagent.domain.context.context_manager import ContextManager
from superagent.domain.errors import TurnError
from superagent.domain.models.agent_state import Role, Session, ToolCall
from superagent.domain.ports import Inference, TextFragment, ToolCallRequest
from superagent.domain.streaming.streaming_handler import EventEmitter
from superagent.domain.tool.tool_registry import CallContext, CapabilityRegistry
from superagent.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

MAX_ROUND_TRIPS = 5


class TurnState(str, Enum):
    """Turn loop states"""
    BUILDING = "building"
    STREAMING = "streaming"
    TOOL_DISPATCH = "tool_dispatch"
    TERMINAL = "terminal"


class TurnResult(BaseModel):
    """Outcome of one turn"""
    turn_id: str
    reply: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    round_trips: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class TurnLoop:
    """Runs one user message through retrieval, the model and any tool calls.

    The loop is Building -> Streaming -> (ToolDispatch -> Streaming)* ->
    Terminal. Every text fragment is emitted as soon as it arrives. Tool
    calls and their results stay in the turn-local transcript; only the
    user message and the final assistant reply are written to the session.
    """

    def __init__(
        self,
        inference: Inference,
        registry: CapabilityRegistry,
        context_manager: ContextManager,
        max_round_trips: int = MAX_ROUND_TRIPS
    ):
        self.inference = inference
        self.registry = registry
        self.context_manager = context_manager
        self.max_round_trips = max_round_trips

    async def run(
        self,
        session: Session,
        prompt: str,
        emit: EventEmitter,
        connection_id: Optional[str] = None
    ) -> TurnResult:
        """Process one user message for a session that is currently idle"""

        if not session.is_idle:
            raise RuntimeError(f"Session {session.id} already has an active turn ({session.active_turn})")

        turn_id = uuid4().hex
        session.active_turn = turn_id
        try:
            return await self._run_turn(session, turn_id, prompt, emit, connection_id)
        finally:
            session.active_turn = None

    async def _run_turn(
        self,
        session: Session,
        turn_id: str,
        prompt: str,
        emit: EventEmitter,
        connection_id: Optional[str]
    ) -> TurnResult:
        result = TurnResult(turn_id=turn_id)
        call_context = CallContext(session_id=session.id, connection_id=connection_id, turn_id=turn_id)

        # Building
        context = await self.context_manager.build_context(prompt, session.id)
        session.append(Role.USER, prompt)

        transcript: List[Dict[str, Any]] = [{"role": Role.SYSTEM.value, "content": context.system_prompt}]
        transcript.extend(message.to_prompt() for message in session.messages)
        tools = self.registry.schemas()

        final_text = ""
        try:
            while True:
                result.round_trips += 1
                previous = TurnState.BUILDING if result.round_trips == 1 else TurnState.TOOL_DISPATCH
                agent_logger.log_turn_transition(
                    session.id, turn_id, previous.value, TurnState.STREAMING.value, result.round_trips
                )

                fragments: List[str] = []
                dispatched: List[ToolCall] = []

                async for item in self.inference.stream_complete(transcript, tools):
                    if isinstance(item, TextFragment):
                        if not item.text:
                            continue
                        fragments.append(item.text)
                        await emit(TextEvent(content=item.text))
                    elif isinstance(item, ToolCallRequest):
                        await emit(StatusEvent(content=f"Using tool: {item.name}..."))
                        call = await self.registry.dispatch(item.name, item.arguments, call_context, call_id=item.id)
                        dispatched.append(call)

                final_text = "".join(fragments)
                if not dispatched:
                    break

                # ToolDispatch: feed results back and stream again
                agent_logger.log_turn_transition(
                    session.id, turn_id, TurnState.STREAMING.value, TurnState.TOOL_DISPATCH.value, result.round_trips
                )
                result.tool_calls.extend(dispatched)
                transcript.extend(self._tool_exchange(final_text, dispatched))

                if result.round_trips >= self.max_round_trips:
                    logger.warning(
                        "Round-trip bound reached, ending turn with partial answer",
                        session_id=session.id,
                        turn_id=turn_id,
                        round_trips=result.round_trips
                    )
                    break

        except Exception as e:
            error = TurnError(session.id, str(e) or type(e).__name__)
            logger.error("Turn aborted", session_id=session.id, turn_id=turn_id, error=str(error), exc_info=True)
            metrics.increment_counter("turns.failed")
            await emit(ErrorEvent(content=str(error)))
            result.error = str(error)
            return result

        # Terminal
        agent_logger.log_turn_transition(
            session.id, turn_id, TurnState.STREAMING.value, TurnState.TERMINAL.value, result.round_trips
        )
        session.append(Role.ASSISTANT, final_text)
        result.reply = final_text
        await emit(StopEvent())

        metrics.increment_counter("turns.completed")
        logger.info(
            "Turn completed",
            session_id=session.id,
            turn_id=turn_id,
            round_trips=result.round_trips,
            tool_calls=len(result.tool_calls)
        )
        return result

    @staticmethod
    def _tool_exchange(text: str, calls: List[ToolCall]) -> List[Dict[str, Any]]:
        """Transcript entries for one assistant tool-call message and its results"""

        exchange: List[Dict[str, Any]] = [{
            "role": Role.ASSISTANT.value,
            "content": text or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)}
                }
                for call in calls
            ]
        }]
        exchange.extend(
            {"role": "tool", "tool_call_id": call.id, "content": call.result_summary}
            for call in calls
        )
        return exchange
