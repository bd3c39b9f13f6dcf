import pytest

from superagent.domain.models.agent_state import ResearchParams, RunStatus, TaskRun
from superagent.domain.ports import VectorEntry
from superagent.infrastructure.storage.object_store import LocalObjectStore
from superagent.infrastructure.storage.step_log import SqliteStepLog
from superagent.infrastructure.storage.vector_index import SqliteVectorIndex


@pytest.fixture
def vector_index(tmp_path):
    return SqliteVectorIndex(tmp_path / "db" / "vectors.db")


@pytest.fixture
def object_store(tmp_path):
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture
def step_log(tmp_path):
    return SqliteStepLog(tmp_path / "steps.db")


def make_run(run_id="run-1"):
    return TaskRun(
        id=run_id,
        source_session_id="session-1",
        params=ResearchParams(topic="tides", source_session_id="session-1")
    )


@pytest.mark.asyncio
async def test_vector_index_ranks_by_cosine_similarity(vector_index):
    await vector_index.initialize()
    await vector_index.upsert([
        VectorEntry(id="a", vector=[1.0, 0.0, 0.0], metadata={"text": "east"}),
        VectorEntry(id="b", vector=[0.7, 0.7, 0.0], metadata={"text": "north-east"}),
        VectorEntry(id="c", vector=[0.0, 0.0, 1.0], metadata={"text": "up"}),
    ])

    matches = await vector_index.query([1.0, 0.1, 0.0], top_k=2)

    assert [m.id for m in matches] == ["a", "b"]
    assert matches[0].score > matches[1].score
    assert matches[0].metadata == {"text": "east"}


@pytest.mark.asyncio
async def test_vector_index_upsert_overwrites(vector_index):
    await vector_index.initialize()
    await vector_index.upsert([VectorEntry(id="doc#0", vector=[1.0, 0.0], metadata={"text": "old"})])
    await vector_index.upsert([VectorEntry(id="doc#0", vector=[0.0, 1.0], metadata={"text": "new"})])

    [match] = await vector_index.query([0.0, 1.0], top_k=5)

    assert match.metadata == {"text": "new"}
    assert match.score == pytest.approx(1.0)
    assert await vector_index.count() == 1


@pytest.mark.asyncio
async def test_vector_index_empty(vector_index):
    await vector_index.initialize()
    assert await vector_index.query([1.0, 0.0], top_k=3) == []


@pytest.mark.asyncio
async def test_object_store_round_trip(object_store):
    await object_store.put("generated/fox.png", b"\x89PNG", "image/png")
    await object_store.put("notes.txt", b"hello", "text/plain")

    stored = await object_store.get("generated/fox.png")

    assert stored.data == b"\x89PNG"
    assert stored.content_type == "image/png"
    assert await object_store.list() == ["generated/fox.png", "notes.txt"]


@pytest.mark.asyncio
async def test_object_store_missing_and_empty(object_store):
    assert await object_store.get("missing.txt") is None
    assert await object_store.list() == []


@pytest.mark.asyncio
async def test_object_store_keeps_content_types_of_similar_names_apart(object_store):
    await object_store.put("a/b", b"\x89PNG", "image/png")
    await object_store.put("a__b", b"hello", "text/plain")
    await object_store.put("a/b.json", b"{}", "application/json")

    assert (await object_store.get("a/b")).content_type == "image/png"
    assert (await object_store.get("a__b")).content_type == "text/plain"
    assert (await object_store.get("a/b.json")).content_type == "application/json"
    assert await object_store.list() == ["a/b", "a/b.json", "a__b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["../escape.txt", "/etc/passwd", "a/../../b", ".meta/x", ""])
async def test_object_store_rejects_unsafe_names(object_store, name):
    with pytest.raises(ValueError):
        await object_store.put(name, b"x", "text/plain")


@pytest.mark.asyncio
async def test_step_log_records_steps_in_order(step_log):
    await step_log.initialize()
    await step_log.create_run(make_run())

    await step_log.record_step("run-1", "plan", "the plan")
    await step_log.record_step("run-1", "fetch", {"files": ["a.txt"]})

    run = await step_log.get_run("run-1")
    assert [s.name for s in run.steps] == ["plan", "fetch"]
    assert run.completed_steps()["fetch"].result == {"files": ["a.txt"]}
    assert run.params.topic == "tides"
    assert run.status == RunStatus.RUNNING


@pytest.mark.asyncio
async def test_step_log_keeps_first_result(step_log):
    await step_log.initialize()
    await step_log.create_run(make_run())

    await step_log.record_step("run-1", "plan", "first")
    await step_log.record_step("run-1", "plan", "second")

    run = await step_log.get_run("run-1")
    assert len(run.steps) == 1
    assert run.steps[0].result == "first"


@pytest.mark.asyncio
async def test_step_log_status_and_unfinished_runs(step_log):
    await step_log.initialize()
    for run_id in ("run-1", "run-2", "run-3"):
        await step_log.create_run(make_run(run_id))

    await step_log.set_status("run-1", RunStatus.DONE)
    await step_log.set_status("run-2", RunStatus.FAILED, "Step 'plan' failed")

    unfinished = await step_log.unfinished_runs()
    failed = await step_log.get_run("run-2")

    assert [run.id for run in unfinished] == ["run-3"]
    assert failed.status == RunStatus.FAILED
    assert failed.error == "Step 'plan' failed"
    assert failed.is_finished


@pytest.mark.asyncio
async def test_step_log_survives_reopen(tmp_path):
    first = SqliteStepLog(tmp_path / "steps.db")
    await first.initialize()
    await first.create_run(make_run())
    await first.record_step("run-1", "plan", "persisted")

    reopened = SqliteStepLog(tmp_path / "steps.db")
    await reopened.initialize()
    run = await reopened.get_run("run-1")

    assert run.completed_steps()["plan"].result == "persisted"
    assert await reopened.get_run("other") is None
