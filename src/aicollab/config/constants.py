"""Paths and default values used across the project."""

from pathlib import Path

# Base directory for all aicollab data
AICOLLAB_HOME = Path.home() / ".aicollab"

CONFIG_DIR = AICOLLAB_HOME
CONFIG_FILE = CONFIG_DIR / "config.json"

# Dispatcher defaults
DEFAULT_TASK_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENT_TASKS = 5
DEFAULT_MAX_HISTORY_SIZE = 100

# Text-generation backend
DEFAULT_OLLAMA_URL = "http://localhost:11434"
MODELS_CACHE_TTL_SECONDS = 60.0

# Agent caches
RESPONSE_CACHE_TTL_SECONDS = 600.0
RESPONSE_CACHE_MAX_ENTRIES = 50
ANALYSIS_CACHE_TTL_SECONDS = 3600.0
ANALYSIS_CACHE_MAX_ENTRIES = 20
AGENT_RESULT_HISTORY_SIZE = 50

# GitHub CLI
DEFAULT_GH_PATH = "gh"
MAX_RECENT_REPOSITORIES = 10
