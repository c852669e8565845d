"""Agents: the worker contract, shared pipeline and concrete agents."""

from aicollab.agents.base import Agent, BaseAgent, TextBackend
from aicollab.agents.fallback import FallbackResponder
from aicollab.agents.github import GitHubAgent, OperationResult
from aicollab.agents.models import (
    AgentConfiguration,
    AgentExchangeId,
    AgentInitResult,
    AgentState,
    AgentStateKind,
    RetryPolicy,
)
from aicollab.agents.ollama import ModelFamily, OllamaAgent
from aicollab.agents.progress import ProgressMonitor, estimate_duration

__all__ = [
    "Agent",
    "AgentConfiguration",
    "AgentExchangeId",
    "AgentInitResult",
    "AgentState",
    "AgentStateKind",
    "BaseAgent",
    "FallbackResponder",
    "GitHubAgent",
    "ModelFamily",
    "OllamaAgent",
    "OperationResult",
    "ProgressMonitor",
    "RetryPolicy",
    "TextBackend",
    "estimate_duration",
]
