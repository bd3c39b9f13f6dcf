# Langfuse integration
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog
from langfuse import Langfuse

logger = structlog.get_logger(__name__)


class ObservabilityManager:
    """Wraps capability executions and research runs in Langfuse spans.

    Tracing is off unless both keys are configured; every ``trace_*`` call
    then degrades to a no-op context.
    """

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: Optional[str] = None,
        environment: str = "development"
    ):
        self.environment = environment
        self.langfuse: Optional[Langfuse] = None
        if public_key and secret_key:
            self.langfuse = Langfuse(
                public_key=public_key,
                secret_key=secret_key,
                host=host
            )
            logger.info("Langfuse tracing enabled", host=host)

    @property
    def enabled(self) -> bool:
        return self.langfuse is not None

    @contextmanager
    def trace_tool_execution(self, tool_name: str, parameters: Dict[str, Any], session_id: str) -> Iterator[Any]:
        """Open a span around one capability execution; yields the span (or None)"""
        if self.langfuse is None:
            yield None
            return

        with self.langfuse.start_as_current_span(
            name=f"tool:{tool_name}",
            input=parameters,
            metadata={
                "tool_name": tool_name,
                "session_id": session_id,
                "environment": self.environment
            }
        ) as span:
            yield span

    @contextmanager
    def trace_research_step(self, run_id: str, step_name: str) -> Iterator[Any]:
        """Open a span around one research step body"""
        if self.langfuse is None:
            yield None
            return

        with self.langfuse.start_as_current_span(
            name=f"research:{step_name}",
            metadata={"run_id": run_id, "environment": self.environment}
        ) as span:
            yield span

    @staticmethod
    def record_output(span: Any, output: Any, **metadata: Any) -> None:
        """Attach an output to a span yielded by one of the ``trace_*`` contexts"""
        if span is None:
            return
        span.update(output=output, metadata=metadata or None)

    def flush(self) -> None:
        if self.langfuse is not None:
            self.langfuse.flush()
