from typing import Optional


class AgentError(Exception):
    """Base class for all agent service errors"""


class ConfigError(AgentError, ValueError):
    """Invalid configuration passed by the caller (e.g. chunking parameters)"""


class VectorIndexError(AgentError):
    """Embedding or vector index I/O failed while indexing a document"""

    def __init__(self, message: str, source_id: Optional[str] = None, indexed: int = 0):
        super().__init__(message)
        self.source_id = source_id
        self.indexed = indexed


class CapabilityError(AgentError):
    """A capability handler could not produce a result"""

    def __init__(self, capability: str, message: str):
        super().__init__(f"{capability}: {message}")
        self.capability = capability


class TurnError(AgentError):
    """Model invocation failed and the current turn was aborted"""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class TaskStepError(AgentError):
    """A durable task step exhausted its retry ceiling"""

    def __init__(self, run_id: str, step_name: str, attempts: int, cause: BaseException):
        super().__init__(f"Step '{step_name}' of run {run_id} failed after {attempts} attempts: {cause}")
        self.run_id = run_id
        self.step_name = step_name
        self.attempts = attempts
        self.cause = cause
