from typing import Dict, List, Any, Optional, Sequence
import structlog
from pydantic import BaseModel, Field

from superagent.domain.errors import VectorIndexError
from superagent.domain.ports import Inference, VectorEntry, VectorIndex

logger = structlog.get_logger(__name__)

MAX_CHUNKS_PER_INDEX = 50


def chunk_id(source_id: str, chunk_index: int) -> str:
    """Stable vector id for a chunk of a source document"""
    return f"{source_id}#{chunk_index}"


class RetrievedChunk(BaseModel):
    """A chunk returned by a retrieval query"""
    text: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ContextRetriever:
    """Embeds document chunks into the vector index and queries them back as context"""

    def __init__(
        self,
        inference: Inference,
        vector_index: VectorIndex,
        max_chunks_per_index: int = MAX_CHUNKS_PER_INDEX,
        default_top_k: int = 3
    ):
        self.inference = inference
        self.vector_index = vector_index
        self.max_chunks_per_index = max_chunks_per_index
        self.default_top_k = default_top_k

    async def index(self, source_id: str, chunks: Sequence[str]) -> int:
        """Embed and upsert the chunks of one source document.

        Only the first ``max_chunks_per_index`` chunks are processed; callers
        that need full coverage must paginate. A failed embedding or upsert
        stops indexing at the current chunk. Chunks already upserted stay in
        the index.

        Returns:
            The number of chunks upserted.

        Raises:
            VectorIndexError: If an embedding or upsert call fails.
        """
        if len(chunks) > self.max_chunks_per_index:
            logger.debug(
                "Dropping chunks over the per-call cap",
                source_id=source_id,
                total=len(chunks),
                cap=self.max_chunks_per_index
            )
        batch = list(chunks[:self.max_chunks_per_index])

        indexed = 0
        for chunk_index, text in enumerate(batch):
            try:
                vector = await self.inference.embed(text)
                await self.vector_index.upsert([
                    VectorEntry(
                        id=chunk_id(source_id, chunk_index),
                        vector=list(vector),
                        metadata={
                            "source_id": source_id,
                            "text": text,
                            "chunk_index": chunk_index
                        }
                    )
                ])
            except Exception as e:
                logger.error(
                    "Indexing aborted",
                    source_id=source_id,
                    chunk_index=chunk_index,
                    indexed=indexed,
                    error=str(e)
                )
                raise VectorIndexError(
                    f"Failed to index chunk {chunk_index} of '{source_id}': {e}",
                    source_id=source_id,
                    indexed=indexed
                ) from e
            indexed += 1

        logger.info("Indexed document", source_id=source_id, chunks=indexed)
        return indexed

    async def query(self, text: str, top_k: Optional[int] = None) -> List[RetrievedChunk]:
        """Return the chunks nearest to ``text``, best first.

        Retrieval only enriches the prompt, so an empty index or any failure
        yields an empty list instead of an error.
        """
        if top_k is None:
            top_k = self.default_top_k
        if top_k <= 0:
            return []

        try:
            vector = await self.inference.embed(text)
            matches = await self.vector_index.query(vector, top_k)
        except Exception as e:
            logger.warning("Retrieval failed, continuing without context", error=str(e))
            return []

        results = [
            RetrievedChunk(
                text=match.metadata.get("text", ""),
                score=match.score,
                metadata=dict(match.metadata)
            )
            for match in matches
        ]
        results.sort(key=lambda chunk: chunk.score, reverse=True)
        return results[:top_k]
