from typing import Any, Dict, Optional, Set
from uuid import uuid4
import asyncio
import time
import structlog

from superagent.domain.errors import TaskStepError
from superagent.domain.models.agent_state import ResearchParams, RunStatus, TaskRun
from superagent.domain.ports import StepLog
from superagent.infrastructure.observability.langfuse_tracing import ObservabilityManager
from superagent.infrastructure.observability.logging import agent_logger, metrics
from .workflow import ResearchState, ResearchWorkflow, StepBody

logger = structlog.get_logger(__name__)


class DurableTaskEngine:
    """Runs research pipelines against a persistent step log.

    Before a step body executes, the step log is consulted: a recorded result
    is reused as-is. A failing body is retried with exponential backoff; once
    ``max_attempts`` is exhausted the run is marked failed and nothing after
    it executes. Runs are independent tasks owned by the engine, so they
    outlive the connection that started them.
    """

    def __init__(
        self,
        step_log: StepLog,
        workflow: ResearchWorkflow,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        observability: Optional[ObservabilityManager] = None
    ):
        self.step_log = step_log
        self.workflow = workflow
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.observability = observability or ObservabilityManager()
        self.graph = workflow.build_graph(self._run_step)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._run_sessions: Dict[str, str] = {}

    async def schedule(self, params: ResearchParams) -> str:
        """Persist a new run and start it in the background; returns the run id immediately"""

        run = TaskRun(id=uuid4().hex, source_session_id=params.source_session_id, params=params)
        await self.step_log.create_run(run)
        self._spawn(run.id, params.source_session_id)

        metrics.increment_counter("research.scheduled")
        logger.info("Research run scheduled", run_id=run.id, session_id=params.source_session_id, topic=params.topic)
        return run.id

    async def resume_pending(self) -> int:
        """Restart every run the step log still marks as running"""

        resumed = 0
        for run in await self.step_log.unfinished_runs():
            if self._spawn(run.id, run.source_session_id):
                resumed += 1
                logger.info("Resuming research run", run_id=run.id, completed_steps=[s.name for s in run.steps])
        return resumed

    async def get_run(self, run_id: str) -> Optional[TaskRun]:
        return await self.step_log.get_run(run_id)

    async def wait(self, run_id: str):
        """Await the background task of a run, if one is active"""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)

    async def run(self, run_id: str) -> TaskRun:
        """Execute (or resume) a run until it is done or failed"""

        run = await self.step_log.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown research run: {run_id}")
        if run.is_finished:
            return run

        state: ResearchState = {"run_id": run_id, "params": run.params, "results": {}}
        start_time = time.time()

        try:
            await self.graph.ainvoke(state)
        except TaskStepError as e:
            logger.error("Research run failed", run_id=run_id, step=e.step_name, attempts=e.attempts, error=str(e))
            await self.step_log.set_status(run_id, RunStatus.FAILED, str(e))
            metrics.increment_counter("research.failed")
        else:
            await self.step_log.set_status(run_id, RunStatus.DONE)
            metrics.increment_counter("research.completed")
            logger.info("Research run completed", run_id=run_id)

        metrics.record_latency("research.run", (time.time() - start_time) * 1000)
        return await self.step_log.get_run(run_id)

    async def _run_step(
        self,
        run_id: str,
        step_name: str,
        body: StepBody,
        params: ResearchParams,
        results: Dict[str, Any]
    ) -> Any:
        run = await self.step_log.get_run(run_id)
        recorded = run.completed_steps().get(step_name) if run else None
        if recorded is not None:
            agent_logger.log_step_transition(run_id, step_name, "reused")
            return recorded.result

        attempt = 0
        while True:
            attempt += 1
            agent_logger.log_step_transition(run_id, step_name, "started", attempt=attempt)
            try:
                with self.observability.trace_research_step(run_id, step_name) as span:
                    result = await body(run_id, params, results)
                    ObservabilityManager.record_output(span, result, attempt=attempt)
            except Exception as e:
                agent_logger.log_step_transition(run_id, step_name, "failed", attempt=attempt, error=str(e))
                if attempt >= self.max_attempts:
                    raise TaskStepError(run_id, step_name, attempt, e) from e
                await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                continue

            await self.step_log.record_step(run_id, step_name, result)
            agent_logger.log_step_transition(run_id, step_name, "completed", attempt=attempt)
            return result

    def _spawn(self, run_id: str, session_id: str) -> bool:
        existing = self._tasks.get(run_id)
        if existing is not None and not existing.done():
            return False

        task = asyncio.create_task(self._run_in_background(run_id), name=f"research-{run_id}")
        self._tasks[run_id] = task
        self._run_sessions[run_id] = session_id
        task.add_done_callback(lambda done: self._forget(run_id, done))
        return True

    def _forget(self, run_id: str, task: asyncio.Task):
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]
            self._run_sessions.pop(run_id, None)

    async def _run_in_background(self, run_id: str):
        try:
            await self.run(run_id)
        except Exception as e:
            # Status stays running; resume_pending picks the run up on next start
            logger.error("Research run crashed", run_id=run_id, error=str(e), exc_info=True)

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    def busy_sessions(self) -> Set[str]:
        """Sessions that started a run which is still in flight"""
        return set(self._run_sessions.values())

    async def shutdown(self):
        """Cancel in-flight runs; they resume from the step log on next start"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._run_sessions.clear()
        logger.info("Task engine stopped", cancelled=len(tasks))
