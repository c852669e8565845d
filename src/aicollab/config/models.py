"""Pydantic models for configuration sub-sections."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from aicollab.config.constants import (
    DEFAULT_GH_PATH,
    DEFAULT_MAX_CONCURRENT_TASKS,
    DEFAULT_MAX_HISTORY_SIZE,
    DEFAULT_OLLAMA_URL,
    DEFAULT_TASK_TIMEOUT,
    MAX_RECENT_REPOSITORIES,
    MODELS_CACHE_TTL_SECONDS,
)


class CollaboratorConfig(BaseModel):
    """Dispatcher behaviour."""

    default_task_timeout: float = DEFAULT_TASK_TIMEOUT
    enable_auto_context_management: bool = True
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE

    @field_validator("default_task_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("default_task_timeout must be positive")
        return v

    @field_validator("max_concurrent_tasks", "max_history_size")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class OllamaConfig(BaseModel):
    """Local text-generation backend."""

    base_url: str = DEFAULT_OLLAMA_URL
    default_model: str = ""
    request_timeout: float = 120.0
    models_cache_ttl: float = MODELS_CACHE_TTL_SECONDS


class GitHubConfig(BaseModel):
    """GitHub CLI wrapper settings."""

    cli_path: str = DEFAULT_GH_PATH
    default_repository: str = ""  # "owner/name"
    max_recent_repositories: int = MAX_RECENT_REPOSITORIES


class AgentDefaults(BaseModel):
    """Defaults applied to agents created from the CLI."""

    rate_limit: int = 60
    max_tokens: int = 4096
    temperature: float | None = None  # None: the model family's recommendation
    timeout: float = 30.0
    max_retries: int = 3
    extra: dict[str, str] = Field(default_factory=dict)
