import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from superagent.infrastructure.config.settings import Settings
from superagent.infrastructure.observability.langfuse_tracing import ObservabilityManager


def test_defaults():
    settings = Settings()

    assert settings.chunk_size == 800
    assert settings.chunk_overlap == 100
    assert settings.max_chunks_per_index == 50
    assert settings.retrieval_top_k == 3
    assert settings.max_round_trips == 5
    assert settings.step_log_path == Path("data") / "steps.db"


def test_from_env_reads_prefixed_variables(monkeypatch, tmp_path):
    monkeypatch.setenv("SUPERAGENT_MAX_ROUND_TRIPS", "3")
    monkeypatch.setenv("SUPERAGENT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SUPERAGENT_RESEARCH_WEB_LOOKUP", "false")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    settings = Settings.from_env(env_file=None)

    assert settings.max_round_trips == 3
    assert settings.data_dir == tmp_path
    assert settings.research_web_lookup is False
    assert settings.openai_api_key == "sk-test"
    assert settings.vector_index_path == tmp_path / "vectors.db"


def test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("SUPERAGENT_CHUNK_SIZE", "500")

    settings = Settings.from_env(env_file=None, chunk_size=400)

    assert settings.chunk_size == 400


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    monkeypatch.delenv("SUPERAGENT_RETRIEVAL_TOP_K", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("SUPERAGENT_RETRIEVAL_TOP_K=7\n")

    try:
        settings = Settings.from_env(env_file=str(env_file))
    finally:
        os.environ.pop("SUPERAGENT_RETRIEVAL_TOP_K", None)

    assert settings.retrieval_top_k == 7


@pytest.mark.parametrize("overrides", [
    {"chunk_size": 100, "chunk_overlap": 100},
    {"chunk_overlap": -1},
    {"max_round_trips": 0},
    {"task_max_attempts": 0},
])
def test_invalid_limits_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_tracing_disabled_without_keys():
    observability = ObservabilityManager()

    assert not observability.enabled
    with observability.trace_tool_execution("web_search", {"query": "x"}, "s1") as span:
        assert span is None
    with observability.trace_research_step("run-1", "plan") as span:
        ObservabilityManager.record_output(span, "ignored")
    observability.flush()
