"""External collaborators: the Ollama text backend and the GitHub CLI."""

from aicollab.services.github import GitHubService, Issue, IssueState, PRState, PullRequest, Repository
from aicollab.services.ollama import GenerationOptions, OllamaModel, OllamaService, PullProgress

__all__ = [
    "GenerationOptions",
    "GitHubService",
    "Issue",
    "IssueState",
    "OllamaModel",
    "OllamaService",
    "PRState",
    "PullProgress",
    "PullRequest",
    "Repository",
]
