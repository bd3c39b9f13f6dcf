import mimetypes

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from superagent.application.runtime import AgentRuntime
from superagent.domain.errors import VectorIndexError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["documents"])


def get_runtime(request: Request) -> AgentRuntime:
    return request.app.state.runtime


@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    runtime: AgentRuntime = Depends(get_runtime)
):
    """Store a document and index its text for retrieval"""

    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file has no name")

    data = await file.read()
    content_type = file.content_type or mimetypes.guess_type(file.filename)[0] or "application/octet-stream"

    try:
        result = await runtime.context_manager.ingest_document(file.filename, data, content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VectorIndexError as e:
        logger.error("Document indexing failed", name=file.filename, indexed=e.indexed, error=str(e))
        raise HTTPException(status_code=502, detail=f"Indexing failed: {e}")

    logger.info("Document ingested", name=result.name, chunks=result.chunks_indexed)
    return {
        "name": result.name,
        "content_type": result.content_type,
        "chunks_indexed": result.chunks_indexed
    }


@router.get("/files/{name:path}")
async def get_file(name: str, runtime: AgentRuntime = Depends(get_runtime)):
    """Serve a stored object, e.g. a generated image"""

    try:
        stored = await runtime.object_store.get(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if stored is None:
        raise HTTPException(status_code=404, detail=f"File '{name}' not found")

    return Response(content=stored.data, media_type=stored.content_type)
