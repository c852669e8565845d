"""Configuration: settings, sub-config models and path constants."""

from aicollab.config.models import AgentDefaults, CollaboratorConfig, GitHubConfig, OllamaConfig
from aicollab.config.settings import Settings, get_settings

__all__ = [
    "AgentDefaults",
    "CollaboratorConfig",
    "GitHubConfig",
    "OllamaConfig",
    "Settings",
    "get_settings",
]
