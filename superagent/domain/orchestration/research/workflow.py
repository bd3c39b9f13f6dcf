"""The deep-research pipeline: plan -> fetch -> synthesize -> archive_and_notify.

Step bodies are plain coroutines taking the run id, the run parameters and the
results of the earlier steps. Sequencing is a LangGraph ``StateGraph``; every
node goes through a step runner supplied by the task engine, which is where
memoization and retries happen.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypedDict
from urllib.parse import quote_plus

import structlog
from langgraph.graph import StateGraph, END

from superagent.domain.context.context_manager import is_binary_content
from superagent.domain.models.agent_state import ResearchParams
from superagent.domain.ports import Browser, Inference, ObjectStore
from superagent.domain.session.session_directory import SessionDirectory

logger = structlog.get_logger(__name__)

PLAN = "plan"
FETCH = "fetch"
SYNTHESIZE = "synthesize"
ARCHIVE_AND_NOTIFY = "archive_and_notify"

STEP_ORDER = (PLAN, FETCH, SYNTHESIZE, ARCHIVE_AND_NOTIFY)

FILE_EXCERPT_CHARS = 500
SYNTHESIS_INSTRUCTION = "Synthesize the research plan and file analysis."
NO_FILES = "No files found."

StepBody = Callable[[str, ResearchParams, Dict[str, Any]], Awaitable[Any]]
StepRunner = Callable[[str, str, StepBody, ResearchParams, Dict[str, Any]], Awaitable[Any]]


class ResearchState(TypedDict):
    """State carried between research graph nodes"""
    run_id: str
    params: ResearchParams
    results: Dict[str, Any]


def archive_name(run_id: str) -> str:
    return f"research/{run_id}.md"


class ResearchWorkflow:
    """Step bodies of the research pipeline"""

    def __init__(
        self,
        inference: Inference,
        object_store: ObjectStore,
        browser: Browser,
        directory: SessionDirectory,
        search_url_template: str = "https://www.google.com/search?q={query}",
        browser_timeout_seconds: float = 30.0,
        max_search_chars: int = 2000,
        max_files: int = 3,
        web_lookup: bool = True
    ):
        self.inference = inference
        self.object_store = object_store
        self.browser = browser
        self.directory = directory
        self.search_url_template = search_url_template
        self.browser_timeout_seconds = browser_timeout_seconds
        self.max_search_chars = max_search_chars
        self.max_files = max_files
        self.web_lookup = web_lookup

    def steps(self) -> Dict[str, StepBody]:
        return {
            PLAN: self.plan,
            FETCH: self.fetch,
            SYNTHESIZE: self.synthesize,
            ARCHIVE_AND_NOTIFY: self.archive_and_notify,
        }

    def build_graph(self, runner: StepRunner):
        """Compile the pipeline with every node routed through ``runner``"""

        workflow = StateGraph(ResearchState)

        for name, body in self.steps().items():
            workflow.add_node(name, self._node(name, body, runner))

        workflow.set_entry_point(STEP_ORDER[0])
        for current, following in zip(STEP_ORDER, STEP_ORDER[1:]):
            workflow.add_edge(current, following)
        workflow.add_edge(STEP_ORDER[-1], END)

        return workflow.compile()

    @staticmethod
    def _node(name: str, body: StepBody, runner: StepRunner):
        async def node(state: ResearchState) -> Dict[str, Any]:
            result = await runner(state["run_id"], name, body, state["params"], state["results"])
            return {"results": {**state["results"], name: result}}

        node.__name__ = f"{name}_node"
        return node

    async def plan(self, run_id: str, params: ResearchParams, results: Dict[str, Any]) -> str:
        return await self.inference.complete([
            {"role": "user", "content": f"Create a 3-step research plan for: {params.topic}"}
        ])

    async def fetch(self, run_id: str, params: ResearchParams, results: Dict[str, Any]) -> str:
        """Collect findings from the web and from stored documents. Read-only."""

        sections: List[str] = []

        if self.web_lookup:
            web = await self._web_lookup(params.topic)
            if web:
                sections.append(f"Web results: {web}")

        names = await self.object_store.list()
        documents = [name for name in names if not name.startswith(("generated/", "research/"))]
        if not documents:
            sections.append(NO_FILES)

        for name in documents[:self.max_files]:
            stored = await self.object_store.get(name)
            if stored is None:
                continue
            if is_binary_content(stored.content_type):
                text = await self.inference.document_to_text(stored.data, stored.content_type)
            else:
                text = stored.data.decode("utf-8", errors="replace")
            sections.append(f"Analyzed file {name}: {text[:FILE_EXCERPT_CHARS]}...")

        return "\n\n".join(sections)

    async def synthesize(self, run_id: str, params: ResearchParams, results: Dict[str, Any]) -> str:
        return await self.inference.complete([
            {"role": "system", "content": SYNTHESIS_INSTRUCTION},
            {"role": "user", "content": f"Plan: {results.get(PLAN)}\n\nFile Analysis: {results.get(FETCH)}"}
        ])

    async def archive_and_notify(self, run_id: str, params: ResearchParams, results: Dict[str, Any]) -> Dict[str, Any]:
        """Write the report under a name derived from the run id, then notify the origin session"""

        report = results.get(SYNTHESIZE) or ""
        name = archive_name(run_id)
        document = f"# Research: {params.topic}\n\n{report}\n"
        await self.object_store.put(name, document.encode("utf-8"), "text/markdown")

        actor = self.directory.resolve(params.source_session_id)
        if actor is None:
            logger.info(
                "Origin session not live, research notification dropped",
                run_id=run_id,
                session_id=params.source_session_id
            )
            notified = False
        else:
            actor.notify(report)
            notified = True

        return {"archive": name, "notified": notified}

    async def _web_lookup(self, topic: str) -> Optional[str]:
        url = self.search_url_template.format(query=quote_plus(topic))
        try:
            text = await asyncio.wait_for(self.browser.fetch_visible_text(url), timeout=self.browser_timeout_seconds)
        except Exception as e:
            # Best effort; TimeoutError included
            logger.warning("Research web lookup failed", url=url, error=str(e))
            return None
        return text[:self.max_search_chars]
