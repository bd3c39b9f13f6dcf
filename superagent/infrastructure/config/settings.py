"""Service configuration loaded from the environment.

Every field can be set with a ``SUPERAGENT_<FIELD>`` environment variable
(e.g. ``SUPERAGENT_MAX_ROUND_TRIPS=3``). A ``.env`` file in the working
directory is loaded first when present. Provider credentials keep their
conventional names (``OPENAI_API_KEY``, ``LANGFUSE_PUBLIC_KEY``, ...).
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from superagent.domain.errors import ConfigError

ENV_PREFIX = "SUPERAGENT_"


class Settings(BaseModel):
    """Runtime settings for the agent service"""

    # Inference
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    image_model: str = "gpt-image-1"
    document_model: str = "gpt-4o-mini"

    # Storage
    data_dir: Path = Field(default=Path("data"))

    # Retrieval
    chunk_size: int = 800
    chunk_overlap: int = 100
    max_chunks_per_index: int = 50
    retrieval_top_k: int = 3

    # Turn loop and capabilities
    max_round_trips: int = 5
    max_search_chars: int = 2000
    max_file_chars: int = 8000
    browser_timeout_seconds: float = 30.0
    search_url_template: str = "https://www.google.com/search?q={query}"
    rewrite_image_prompts: bool = True

    # Durable task engine
    task_max_attempts: int = 3
    task_backoff_seconds: float = 1.0
    research_max_files: int = 3
    research_web_lookup: bool = True

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"
    environment: str = "development"
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: Optional[str] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ConfigError("chunk_overlap must satisfy 0 <= chunk_overlap < chunk_size")
        if self.max_round_trips < 1:
            raise ConfigError("max_round_trips must be at least 1")
        if self.task_max_attempts < 1:
            raise ConfigError("task_max_attempts must be at least 1")
        return self

    @property
    def step_log_path(self) -> Path:
        return self.data_dir / "steps.db"

    @property
    def vector_index_path(self) -> Path:
        return self.data_dir / "vectors.db"

    @property
    def object_store_root(self) -> Path:
        return self.data_dir / "objects"

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env", **overrides: Any) -> "Settings":
        """Build settings from environment variables, with explicit overrides winning"""
        if env_file:
            load_dotenv(env_file, override=False)

        values: Dict[str, Any] = {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_base_url": os.getenv("OPENAI_BASE_URL"),
            "langfuse_public_key": os.getenv("LANGFUSE_PUBLIC_KEY"),
            "langfuse_secret_key": os.getenv("LANGFUSE_SECRET_KEY"),
            "langfuse_host": os.getenv("LANGFUSE_HOST"),
            "environment": os.getenv("ENVIRONMENT", "development"),
        }
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw

        values = {key: value for key, value in values.items() if value is not None}
        values.update(overrides)
        return cls(**values)
