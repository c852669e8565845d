"""Tests for config system."""

import json
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from aicollab.config.models import CollaboratorConfig, OllamaConfig
from aicollab.config.settings import Settings


def test_default_settings(tmp_path):
    """Settings should have sane defaults when no config file exists."""
    with patch("aicollab.config.settings.CONFIG_FILE", tmp_path / "config.json"):
        s = Settings()
    assert s.collaborator.default_task_timeout == 30.0
    assert s.collaborator.max_concurrent_tasks == 5
    assert s.collaborator.max_history_size == 100
    assert s.collaborator.enable_auto_context_management is True
    assert s.ollama.base_url == "http://localhost:11434"
    assert s.github.cli_path == "gh"


def test_settings_override():
    """Explicit values should override defaults."""
    s = Settings(
        collaborator=CollaboratorConfig(max_history_size=7),
        ollama=OllamaConfig(default_model="mistral"),
    )
    assert s.collaborator.max_history_size == 7
    assert s.ollama.default_model == "mistral"


def test_config_file_is_merged(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"log_level": "INFO", "collaborator": {"max_history_size": 3}}))
    with patch("aicollab.config.settings.CONFIG_FILE", config_path):
        s = Settings()
    assert s.log_level == "INFO"
    assert s.collaborator.max_history_size == 3


def test_unreadable_config_file_is_ignored(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")
    with patch("aicollab.config.settings.CONFIG_FILE", config_path):
        s = Settings()
    assert s.collaborator.max_history_size == 100


def test_env_overrides_nested(tmp_path, monkeypatch):
    monkeypatch.setenv("AICOLLAB_COLLABORATOR__MAX_CONCURRENT_TASKS", "9")
    with patch("aicollab.config.settings.CONFIG_FILE", tmp_path / "config.json"):
        s = Settings()
    assert s.collaborator.max_concurrent_tasks == 9


def test_save_round_trip(tmp_path):
    config_path = tmp_path / "nested" / "config.json"
    with patch("aicollab.config.settings.CONFIG_FILE", config_path):
        Settings(ollama=OllamaConfig(default_model="phi3")).save()
        assert Settings.config_exists()
        assert Settings().ollama.default_model == "phi3"


@pytest.mark.parametrize(
    "kwargs",
    [{"default_task_timeout": 0}, {"max_concurrent_tasks": 0}, {"max_history_size": -1}],
)
def test_collaborator_config_rejects_non_positive(kwargs):
    with pytest.raises(ValidationError):
        CollaboratorConfig(**kwargs)
