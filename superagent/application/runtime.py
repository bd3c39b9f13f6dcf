"""Composition root: builds the agent core from settings and adapters."""
from typing import Optional

import structlog

from superagent.application.websocket.connection_manager import ConnectionManager
from superagent.domain.context.context_manager import ContextManager
from superagent.domain.context.context_retriever import ContextRetriever
from superagent.domain.orchestration.core.main_agent import TurnLoop
from superagent.domain.orchestration.research.task_engine import DurableTaskEngine
from superagent.domain.orchestration.research.workflow import ResearchWorkflow
from superagent.domain.ports import Browser, Inference, ObjectStore, StepLog, VectorIndex
from superagent.domain.session.session_actor import SessionActor
from superagent.domain.session.session_directory import SessionDirectory
from superagent.domain.streaming.streaming_handler import StreamingHandler
from superagent.domain.tool.capabilities import AgentCapabilities
from superagent.domain.tool.tool_registry import CapabilityRegistry
from superagent.infrastructure.browser.playwright_browser import PlaywrightBrowser
from superagent.infrastructure.config.settings import Settings
from superagent.infrastructure.inference.openai_inference import OpenAIInference
from superagent.infrastructure.observability.langfuse_tracing import ObservabilityManager
from superagent.infrastructure.storage.object_store import LocalObjectStore
from superagent.infrastructure.storage.step_log import SqliteStepLog
from superagent.infrastructure.storage.vector_index import SqliteVectorIndex

logger = structlog.get_logger(__name__)


class AgentRuntime:
    """Owns every long-lived collaborator of the service.

    Any adapter can be injected; the ones left out are built from
    ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        inference: Optional[Inference] = None,
        vector_index: Optional[VectorIndex] = None,
        object_store: Optional[ObjectStore] = None,
        browser: Optional[Browser] = None,
        step_log: Optional[StepLog] = None,
        observability: Optional[ObservabilityManager] = None
    ):
        self.settings = settings

        self.inference = inference or OpenAIInference(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            chat_model=settings.chat_model,
            embedding_model=settings.embedding_model,
            image_model=settings.image_model,
            document_model=settings.document_model
        )
        self.vector_index = vector_index or SqliteVectorIndex(settings.vector_index_path)
        self.object_store = object_store or LocalObjectStore(settings.object_store_root)
        self.browser = browser or PlaywrightBrowser(timeout_seconds=settings.browser_timeout_seconds)
        self.step_log = step_log or SqliteStepLog(settings.step_log_path)
        self.observability = observability or ObservabilityManager(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
            environment=settings.environment
        )

        # Retrieval
        self.retriever = ContextRetriever(
            self.inference,
            self.vector_index,
            max_chunks_per_index=settings.max_chunks_per_index,
            default_top_k=settings.retrieval_top_k
        )
        self.context_manager = ContextManager(
            self.retriever,
            self.object_store,
            self.inference,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            top_k=settings.retrieval_top_k
        )

        # Sessions and streaming
        self.connection_manager = ConnectionManager()
        self.streaming = StreamingHandler(self.connection_manager)
        self.directory = SessionDirectory()

        # Research
        self.workflow = ResearchWorkflow(
            self.inference,
            self.object_store,
            self.browser,
            self.directory,
            search_url_template=settings.search_url_template,
            browser_timeout_seconds=settings.browser_timeout_seconds,
            max_search_chars=settings.max_search_chars,
            max_files=settings.research_max_files,
            web_lookup=settings.research_web_lookup
        )
        self.task_engine = DurableTaskEngine(
            self.step_log,
            self.workflow,
            max_attempts=settings.task_max_attempts,
            backoff_seconds=settings.task_backoff_seconds,
            observability=self.observability
        )

        # Capabilities and the turn loop
        capabilities = AgentCapabilities(
            self.inference,
            self.object_store,
            self.browser,
            self.task_engine,
            search_url_template=settings.search_url_template,
            max_search_chars=settings.max_search_chars,
            max_file_chars=settings.max_file_chars,
            browser_timeout_seconds=settings.browser_timeout_seconds,
            rewrite_image_prompts=settings.rewrite_image_prompts
        )
        self.registry = CapabilityRegistry(capabilities.build(), observability=self.observability)
        self.turn_loop = TurnLoop(
            self.inference,
            self.registry,
            self.context_manager,
            max_round_trips=settings.max_round_trips
        )

        self.directory.actor_factory = self._new_actor

    def _new_actor(self, session_id: str) -> SessionActor:
        return SessionActor(session_id, self.turn_loop, self.streaming)

    async def start(self):
        """Prepare storage and resume research runs left unfinished by a previous process"""
        for store in (self.vector_index, self.step_log):
            initialize = getattr(store, "initialize", None)
            if initialize is not None:
                await initialize()

        resumed = await self.task_engine.resume_pending()
        logger.info("Agent runtime started", resumed_runs=resumed, tracing=self.observability.enabled)

    async def shutdown(self):
        await self.task_engine.shutdown()
        await self.directory.shutdown()
        await self.connection_manager.close_all()
        self.observability.flush()
        logger.info("Agent runtime stopped")
