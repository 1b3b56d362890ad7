"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "POCKET_"
DEFAULT_CONFIG_PATH = Path("~/.config/pocket-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "upload_root"): "upload_root",
    ("openrouter", "api_key"): "openrouter_api_key",
    ("openrouter", "base_url"): "openrouter_base_url",
    ("openrouter", "embed_model"): "embed_model",
    ("openrouter", "chat_model"): "chat_model",
    ("openrouter", "fallback_chat_model"): "fallback_chat_model",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "timeout"): "embedding_timeout",
    ("chunking", "target_tokens"): "chunk_target_tokens",
    ("chunking", "overlap_tokens"): "chunk_overlap_tokens",
    ("acquisition", "user_agent"): "user_agent",
    ("acquisition", "fetch_timeout"): "fetch_timeout",
    ("acquisition", "browser_fallback"): "browser_fallback_enabled",
    ("acquisition", "render_timeout"): "render_timeout",
    ("acquisition", "max_redirects"): "max_redirects",
    ("agentic", "router_timeout"): "router_timeout",
    ("agentic", "router_retries"): "router_retries",
    ("agentic", "rewrite_timeout"): "rewrite_timeout",
    ("agentic", "grading_timeout"): "grading_timeout",
    ("agentic", "answer_grading_timeout"): "answer_grading_timeout",
    ("agentic", "retry_base_delay"): "retry_base_delay",
    ("agentic", "base_chunk_count"): "base_chunk_count",
    ("worker", "concurrency"): "worker_concurrency",
    ("security", "master_key"): "master_key",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".pocket-rag" / "pocket.db")
    upload_root: Path = Field(default=Path.home() / ".pocket-rag" / "uploads")

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    embed_model: str = "openai/text-embedding-3-large"
    chat_model: str = "google/gemma-3-27b-it:free"
    fallback_chat_model: str = "openai/gpt-oss-120b:free"

    embedding_backend: Literal["openrouter", "hashed"] = "openrouter"
    embedding_batch_size: int = Field(default=100, ge=1)
    embedding_timeout: float = 60.0

    chunk_target_tokens: int = Field(default=600, ge=1)
    chunk_overlap_tokens: int = Field(default=100, ge=0)

    user_agent: str = "Mozilla/5.0 (compatible; PocketRAG/1.0)"
    fetch_timeout: float = 30.0
    browser_fallback_enabled: bool = True
    render_timeout: float = 60.0
    max_redirects: int = 5

    router_timeout: float = 10.0
    router_retries: int = 1
    rewrite_timeout: float = 8.0
    grading_timeout: float = 15.0
    answer_grading_timeout: float = 12.0
    retry_base_delay: float = 0.5
    base_chunk_count: int = 10

    worker_concurrency: int = Field(default=5, ge=1)
    master_key: str = ""

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "upload_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @model_validator(mode="after")
    def _check_chunk_window(self) -> "Settings":
        if self.chunk_overlap_tokens >= self.chunk_target_tokens:
            raise ValueError("chunk_overlap_tokens must be smaller than chunk_target_tokens")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with POCKET_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
