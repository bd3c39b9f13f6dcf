from typing import List
import structlog
from pydantic import BaseModel, Field

from superagent.domain.ports import Inference, ObjectStore
from .chunker import chunk, DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP
from .context_retriever import ContextRetriever, RetrievedChunk

logger = structlog.get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a helpful Super Agent.\n"
    "Context from files: {context}\n"
    "Use tools for Searching, Drawing, Reading files, or Researching."
)

BINARY_CONTENT_PREFIXES = ("image/", "application/pdf")


def is_binary_content(content_type: str) -> bool:
    """Whether a content type needs model-side extraction before it can be read as text"""
    return (content_type or "").lower().startswith(BINARY_CONTENT_PREFIXES)


class TurnContext(BaseModel):
    """Context assembled for one turn"""
    system_prompt: str
    retrieved: List[RetrievedChunk] = Field(default_factory=list)


class IngestionResult(BaseModel):
    name: str
    content_type: str
    chunks_indexed: int


class ContextManager:
    """Assembles turn context and feeds uploaded documents into the retrieval index"""

    def __init__(
        self,
        retriever: ContextRetriever,
        object_store: ObjectStore,
        inference: Inference,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        top_k: int = 3
    ):
        self.retriever = retriever
        self.object_store = object_store
        self.inference = inference
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.top_k = top_k

    async def build_context(self, user_query: str, session_id: str) -> TurnContext:
        """Build the system prompt for a turn from the static instruction and retrieved chunks"""

        retrieved = await self.retriever.query(user_query, top_k=self.top_k)
        context_text = "\n\n".join(item.text for item in retrieved if item.text)

        logger.info("Built turn context", session_id=session_id, retrieved=len(retrieved))

        return TurnContext(
            system_prompt=SYSTEM_INSTRUCTION.format(context=context_text or "None"),
            retrieved=retrieved
        )

    async def ingest_document(self, name: str, data: bytes, content_type: str) -> IngestionResult:
        """Store an uploaded document, then chunk and index its text.

        The document is stored before indexing, so an indexing failure
        (``VectorIndexError``) still leaves it readable by name.
        """

        content_type = content_type or "application/octet-stream"
        await self.object_store.put(name, data, content_type)

        text = await self.document_text(data, content_type)
        chunks = chunk(text, size=self.chunk_size, overlap=self.chunk_overlap)
        indexed = await self.retriever.index(name, chunks)

        return IngestionResult(name=name, content_type=content_type, chunks_indexed=indexed)

    async def document_text(self, data: bytes, content_type: str) -> str:
        """Extract readable text from a stored document"""

        if is_binary_content(content_type):
            return await self.inference.document_to_text(data, content_type)
        return data.decode("utf-8", errors="replace")

