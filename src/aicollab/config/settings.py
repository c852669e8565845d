"""Central settings, loaded from ~/.aicollab/config.json + environment variables."""

from __future__ import annotations

import json
import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from aicollab.config.constants import AICOLLAB_HOME, CONFIG_FILE
from aicollab.config.models import (
    AgentDefaults,
    CollaboratorConfig,
    GitHubConfig,
    OllamaConfig,
)

logger = logging.getLogger("aicollab.config.settings")


class Settings(BaseSettings):
    """All aicollab configuration in one place.

    Priority (highest → lowest):
      1. Environment variables (AICOLLAB_ prefix, ``__`` for nesting)
      2. .env file
      3. ~/.aicollab/config.json
      4. Defaults defined here
    """

    model_config = SettingsConfigDict(
        env_prefix="AICOLLAB_",
        env_file=(".env", str(AICOLLAB_HOME / ".env")),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # --- Sub-configs ---
    collaborator: CollaboratorConfig = Field(default_factory=CollaboratorConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    agent: AgentDefaults = Field(default_factory=AgentDefaults)

    # --- Top-level settings ---
    log_level: str = "WARNING"
    context_file: str = ""  # empty = contexts are not persisted

    @model_validator(mode="before")
    @classmethod
    def load_config_file(cls, values: dict) -> dict:
        """Merge config.json values as defaults (explicit values still override)."""
        if CONFIG_FILE.exists():
            try:
                file_data = json.loads(CONFIG_FILE.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Ignoring unreadable %s: %s", CONFIG_FILE, exc)
            else:
                if isinstance(file_data, dict):
                    values = {**file_data, **{k: v for k, v in values.items() if v is not None}}
        return values

    def save(self) -> None:
        """Persist current settings to config.json."""
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        CONFIG_FILE.write_text(json.dumps(data, indent=2), encoding="utf-8")

    @classmethod
    def config_exists(cls) -> bool:
        return CONFIG_FILE.exists()


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
