import pytest

from superagent.domain.context.context_manager import ContextManager, is_binary_content
from superagent.domain.context.context_retriever import ContextRetriever, chunk_id
from superagent.domain.errors import VectorIndexError


@pytest.fixture
def retriever(inference, vector_index):
    return ContextRetriever(inference, vector_index, max_chunks_per_index=50, default_top_k=3)


@pytest.mark.asyncio
async def test_index_then_query_returns_best_match_first(retriever, vector_index):
    indexed = await retriever.index("fruit.txt", ["apple pie recipe", "zebra crossing", "apple tart"])

    assert indexed == 3
    assert set(vector_index.entries) == {"fruit.txt#0", "fruit.txt#1", "fruit.txt#2"}
    assert vector_index.entries["fruit.txt#1"].metadata == {
        "source_id": "fruit.txt",
        "text": "zebra crossing",
        "chunk_index": 1
    }

    results = await retriever.query("apple", top_k=2)

    assert len(results) == 2
    assert results[0].score >= results[1].score
    assert all("apple" in r.text for r in results)


@pytest.mark.asyncio
async def test_index_caps_chunks_per_call(inference, vector_index):
    retriever = ContextRetriever(inference, vector_index, max_chunks_per_index=50)

    indexed = await retriever.index("big.txt", [f"chunk {i}" for i in range(60)])

    assert indexed == 50
    assert len(vector_index.entries) == 50
    assert "big.txt#50" not in vector_index.entries


@pytest.mark.asyncio
async def test_index_failure_raises_and_keeps_earlier_chunks(retriever, vector_index):
    vector_index.fail_after = 2

    with pytest.raises(VectorIndexError) as exc_info:
        await retriever.index("doc.txt", ["one", "two", "three", "four"])

    assert exc_info.value.indexed == 2
    assert exc_info.value.source_id == "doc.txt"
    assert set(vector_index.entries) == {"doc.txt#0", "doc.txt#1"}


@pytest.mark.asyncio
async def test_embedding_failure_raises_vector_index_error(retriever, inference):
    inference.embed_error = RuntimeError("embedding service down")

    with pytest.raises(VectorIndexError):
        await retriever.index("doc.txt", ["one"])


@pytest.mark.asyncio
async def test_query_on_empty_index_is_empty(retriever):
    assert await retriever.query("anything") == []


@pytest.mark.asyncio
async def test_query_with_zero_top_k_returns_nothing(retriever, inference):
    await retriever.index("fruit.txt", ["apple pie", "apple tart", "apple cake", "apple juice"])
    inference.embed_calls.clear()

    assert await retriever.query("apple", top_k=0) == []
    assert inference.embed_calls == []
    assert len(await retriever.query("apple")) == 3


@pytest.mark.asyncio
async def test_query_failure_degrades_to_empty(retriever, inference, vector_index):
    await retriever.index("doc.txt", ["apple"])

    vector_index.query_error = RuntimeError("timeout")
    assert await retriever.query("apple") == []

    vector_index.query_error = None
    inference.embed_error = RuntimeError("embedding service down")
    assert await retriever.query("apple") == []


@pytest.mark.asyncio
async def test_reingestion_overwrites_by_id_without_purging(retriever, vector_index):
    await retriever.index("doc.txt", ["old a", "old b", "old c"])
    await retriever.index("doc.txt", ["new a"])

    assert vector_index.entries[chunk_id("doc.txt", 0)].metadata["text"] == "new a"
    # Higher-index chunks of the earlier version stay queryable
    assert vector_index.entries[chunk_id("doc.txt", 2)].metadata["text"] == "old c"


@pytest.mark.asyncio
async def test_build_context_without_documents_uses_none(retriever, object_store, inference):
    manager = ContextManager(retriever, object_store, inference)

    context = await manager.build_context("hello", "s1")

    assert context.retrieved == []
    assert "Context from files: None" in context.system_prompt


@pytest.mark.asyncio
async def test_ingest_document_stores_chunks_and_indexes(retriever, object_store, inference, vector_index):
    manager = ContextManager(retriever, object_store, inference, chunk_size=10, chunk_overlap=2)

    result = await manager.ingest_document("notes.txt", b"apples and oranges and pears", "text/plain")

    assert result.name == "notes.txt"
    assert result.chunks_indexed == 4
    assert object_store.objects["notes.txt"].content_type == "text/plain"

    context = await manager.build_context("apples", "s1")
    assert "apples and" in context.system_prompt


@pytest.mark.asyncio
async def test_ingest_binary_document_is_converted(retriever, object_store, inference):
    manager = ContextManager(retriever, object_store, inference)

    result = await manager.ingest_document("scan.pdf", b"%PDF-1.7", "application/pdf")

    assert inference.documents == ["application/pdf"]
    assert result.chunks_indexed == 1
    assert object_store.objects["scan.pdf"].data == b"%PDF-1.7"


def test_binary_content_types():
    assert is_binary_content("image/png")
    assert is_binary_content("application/pdf")
    assert not is_binary_content("text/plain")
    assert not is_binary_content("")
