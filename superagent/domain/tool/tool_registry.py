from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type
from enum import Enum
import time

import structlog
from pydantic import BaseModel, ConfigDict

from superagent.domain.errors import CapabilityError
from superagent.domain.models.agent_state import ToolCall
from superagent.infrastructure.observability.langfuse_tracing import ObservabilityManager
from superagent.infrastructure.observability.logging import agent_logger, metrics
from .tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)


class CapabilityKind(str, Enum):
    """The fixed set of actions the model may request"""
    WEB_SEARCH = "web_search"
    GENERATE_IMAGE = "generate_image"
    READ_FILE = "read_file"
    START_DEEP_RESEARCH = "start_deep_research"


class CallContext(BaseModel):
    """Who a capability is being executed for"""
    session_id: str
    connection_id: Optional[str] = None
    turn_id: Optional[str] = None


Handler = Callable[[Any, CallContext], Awaitable[str]]


class Capability(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: CapabilityKind
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    def tool_schema(self) -> Dict[str, Any]:
        """Function-calling schema advertised to the model"""
        return {
            "type": "function",
            "function": {
                "name": self.kind.value,
                "description": self.description,
                "parameters": ToolParameterValidator.parameters_schema(self.input_model)
            }
        }


class CapabilityRegistry:
    """Registry of the capabilities available to the model.

    ``dispatch`` is the failure boundary: whatever happens inside a handler,
    the caller gets a ``ToolCall`` whose ``result_summary`` is text the model
    can read.
    """

    def __init__(
        self,
        capabilities: Iterable[Capability] = (),
        observability: Optional[ObservabilityManager] = None
    ):
        self.capabilities: Dict[CapabilityKind, Capability] = {}
        self.observability = observability or ObservabilityManager()
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: Capability):
        """Register a capability implementation for its kind"""

        if capability.kind in self.capabilities:
            raise ValueError(f"Capability '{capability.kind.value}' is already registered")
        self.capabilities[capability.kind] = capability

    def get(self, name: str) -> Optional[Capability]:
        try:
            return self.capabilities.get(CapabilityKind(name))
        except ValueError:
            return None

    def names(self) -> List[str]:
        return [kind.value for kind in self.capabilities]

    def schemas(self) -> List[Dict[str, Any]]:
        """Get the function schemas of all registered capabilities"""

        return [capability.tool_schema() for capability in self.capabilities.values()]

    async def dispatch(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: CallContext,
        call_id: Optional[str] = None
    ) -> ToolCall:
        """Validate and execute one capability call, converting every failure to text"""

        capability = self.get(name)
        if capability is None:
            logger.warning("Model requested unknown capability", capability=name, session_id=context.session_id)
            return ToolCall(
                id=call_id,
                name=name,
                arguments=arguments if isinstance(arguments, dict) else {},
                result_summary=f"Error: unknown capability '{name}'. Available: {', '.join(self.names())}",
                succeeded=False
            )

        validation = ToolParameterValidator.validate_tool_call(capability.input_model, arguments)
        if not validation.is_valid:
            return ToolCall(
                id=call_id,
                name=name,
                arguments=arguments if isinstance(arguments, dict) else {},
                result_summary=f"Error: invalid arguments for '{name}': {'; '.join(validation.errors)}",
                succeeded=False
            )

        started = time.perf_counter()
        error: Optional[str] = None

        with self.observability.trace_tool_execution(name, arguments, context.session_id) as span:
            try:
                result = await capability.handler(validation.arguments, context)
                if not isinstance(result, str):
                    raise CapabilityError(name, f"handler returned {type(result).__name__}, expected text")
            except CapabilityError as e:
                error = str(e)
            except Exception as e:
                error = str(CapabilityError(name, f"{type(e).__name__}: {e}"))
            ObservabilityManager.record_output(span, error or result, success=error is None)

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency(f"capability.{name}", duration_ms)

        if error is not None:
            logger.error("Capability failed", capability=name, session_id=context.session_id, error=error)
            metrics.increment_counter("capability.failures", tags={"capability": name})
            result = f"Error: {error}"

        agent_logger.log_tool_execution(
            tool_name=name,
            session_id=context.session_id,
            input_data=arguments,
            output_data=result,
            duration_ms=duration_ms,
            success=error is None,
            error=error
        )

        return ToolCall(
            id=call_id,
            name=name,
            arguments=arguments,
            result_summary=result,
            succeeded=error is None
        )
