from fastapi import APIRouter, Depends, HTTPException

from superagent.application.runtime import AgentRuntime
from .documents import get_runtime

router = APIRouter(prefix="/api/research", tags=["research"])


@router.get("/{run_id}")
async def get_research_run(run_id: str, runtime: AgentRuntime = Depends(get_runtime)):
    """Status and step log of a research run"""
    run = await runtime.task_engine.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Research run '{run_id}' not found")
    return run.model_dump(mode="json")
