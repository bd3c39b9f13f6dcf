import json
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import aiosqlite
import structlog

from superagent.domain.models.agent_state import ResearchParams, RunStatus, StepRecord, TaskRun, utcnow

logger = structlog.get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS task_runs (
        id TEXT PRIMARY KEY,
        source_session_id TEXT NOT NULL,
        params TEXT NOT NULL,
        status TEXT NOT NULL,
        error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_steps (
        run_id TEXT NOT NULL,
        step_name TEXT NOT NULL,
        seq INTEGER NOT NULL,
        result TEXT,
        completed_at TEXT NOT NULL,
        PRIMARY KEY (run_id, step_name)
    )
    """,
)


class SqliteStepLog:
    """Durable ``(run_id, step_name) -> result`` log for research runs.

    A step is written at most once; a second write for the same key is
    ignored, so a step body that re-ran after a crash keeps its first result.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def initialize(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            for statement in SCHEMA:
                await db.execute(statement)
            await db.commit()

    async def create_run(self, run: TaskRun) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO task_runs (id, source_session_id, params, status, error, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    run.id,
                    run.source_session_id,
                    run.params.model_dump_json(),
                    run.status.value,
                    run.error,
                    run.created_at.isoformat(),
                    run.updated_at.isoformat(),
                )
            )
            await db.commit()

    async def get_run(self, run_id: str) -> Optional[TaskRun]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id, source_session_id, params, status, error, created_at, updated_at "
                "FROM task_runs WHERE id = ?",
                (run_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None

            async with db.execute(
                "SELECT step_name, result, completed_at FROM task_steps WHERE run_id = ? ORDER BY seq",
                (run_id,)
            ) as cursor:
                steps = await cursor.fetchall()

        return self._to_run(row, steps)

    async def record_step(self, run_id: str, step_name: str, result: Any) -> None:
        now = utcnow().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO task_steps (run_id, step_name, seq, result, completed_at) "
                "VALUES (?, ?, (SELECT COUNT(*) FROM task_steps WHERE run_id = ?), ?, ?)",
                (run_id, step_name, run_id, json.dumps(result), now)
            )
            if cursor.rowcount == 0:
                logger.warning("Step already recorded, keeping first result", run_id=run_id, step_name=step_name)
            await db.execute("UPDATE task_runs SET updated_at = ? WHERE id = ?", (now, run_id))
            await db.commit()

    async def set_status(self, run_id: str, status: RunStatus, error: Optional[str] = None) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE task_runs SET status = ?, error = ?, updated_at = ? WHERE id = ?",
                (status.value, error, utcnow().isoformat(), run_id)
            )
            await db.commit()

    async def unfinished_runs(self) -> List[TaskRun]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id FROM task_runs WHERE status = ? ORDER BY created_at",
                (RunStatus.RUNNING.value,)
            ) as cursor:
                ids = [row[0] for row in await cursor.fetchall()]

        runs = []
        for run_id in ids:
            run = await self.get_run(run_id)
            if run is not None:
                runs.append(run)
        return runs

    @staticmethod
    def _to_run(row, steps) -> TaskRun:
        run_id, source_session_id, params, status, error, created_at, updated_at = row
        return TaskRun(
            id=run_id,
            source_session_id=source_session_id,
            params=ResearchParams.model_validate_json(params),
            steps=[
                StepRecord(
                    name=step_name,
                    result=json.loads(result) if result is not None else None,
                    completed_at=datetime.fromisoformat(completed_at)
                )
                for step_name, result, completed_at in steps
            ],
            status=RunStatus(status),
            error=error,
            created_at=datetime.fromisoformat(created_at),
            updated_at=datetime.fromisoformat(updated_at)
        )
