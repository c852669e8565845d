"""Agent specialised in GitHub repository management and analysis."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from aicollab.agents.base import BaseAgent
from aicollab.agents.cache import TTLCache
from aicollab.agents.ollama import OllamaAgent
from aicollab.config.constants import ANALYSIS_CACHE_MAX_ENTRIES, ANALYSIS_CACHE_TTL_SECONDS
from aicollab.exceptions import AICollabError, NoActiveRepository
from aicollab.services.github import (
    GitHubService,
    Issue,
    IssueState,
    PRState,
    PullRequest,
    Repository,
)
from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task, TaskPriority

logger = logging.getLogger("aicollab.agents.github")

_URL_RE = re.compile(r"https://github\.com/\S+")
_OVERVIEW_FIELDS = (
    "description,homepageUrl,createdAt,pushedAt,isArchived,stargazerCount,forkCount,"
    "topics,languages,licenseInfo"
)
_AGE_BUCKETS = ((7, "Less than 7 days old"), (30, "7-30 days old"), (90, "30-90 days old"),
                (365, "90-365 days old"))

GITHUB_CAPABILITIES = frozenset({
    Capability.TEXT_ANALYSIS,
    Capability.DATA_SUMMARIZATION,
    Capability.CONTEXT_RETRIEVAL,
})


@dataclass
class OperationResult:
    success: bool
    message: str
    data: Any = None
    url: str | None = None

    @classmethod
    def ok(cls, message: str, data: Any = None, url: str | None = None) -> OperationResult:
        return cls(True, message, data, url)

    @classmethod
    def fail(cls, message: str) -> OperationResult:
        return cls(False, message)


def extract_url(output: str) -> str | None:
    match = _URL_RE.search(output)
    return match.group(0) if match else None


class GitHubAgent(BaseAgent):
    """Wraps :class:`GitHubService` with an active repository and cached analyses.

    Analyses can be enhanced by an optional :class:`OllamaAgent`; when that
    fails the raw analysis is returned.
    """

    def __init__(
        self,
        github: GitHubService,
        ollama_agent: OllamaAgent | None = None,
        repository: Repository | None = None,
        name: str = "GitHubAgent",
    ) -> None:
        super().__init__(
            name=name,
            capabilities=GITHUB_CAPABILITIES,
            description="Specialized agent for GitHub repository management and analysis",
        )
        self.github = github
        self.ollama_agent = ollama_agent
        self.active_repository = repository
        self._analysis_cache: TTLCache[str] = TTLCache(
            ANALYSIS_CACHE_TTL_SECONDS, ANALYSIS_CACHE_MAX_ENTRIES
        )

    def _require_repository(self) -> Repository:
        if self.active_repository is None:
            raise NoActiveRepository()
        return self.active_repository

    # -- Repositories ----------------------------------------------------------

    async def search_repositories(self, query: str, limit: int = 10) -> list[Repository]:
        return await self.github.search_repositories(query, limit)

    def set_active_repository(self, repository: Repository) -> None:
        self.active_repository = repository
        self.github.set_active_repository(repository)

    async def get_repository_details(self, full_name: str) -> Repository:
        """Fetch *full_name* and make it the active repository."""
        repository = await self.github.get_repository_details(full_name)
        self.set_active_repository(repository)
        return repository

    # -- Issues ----------------------------------------------------------------

    async def list_issues(self, state: IssueState = IssueState.OPEN, limit: int = 30) -> list[Issue]:
        return await self.github.list_issues(self._require_repository(), state, limit)

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> OperationResult:
        repository = self._require_repository()
        try:
            output = await self.github.create_issue(repository, title, body, labels)
        except AICollabError as exc:
            return OperationResult.fail(f"Error creating issue: {exc}")
        return OperationResult.ok("Issue created successfully", url=extract_url(output))

    async def get_issue_details(self, number: int) -> tuple[Issue | None, OperationResult]:
        repository = self._require_repository()
        try:
            issue = await self.github.get_issue(repository, number)
        except AICollabError as exc:
            return None, OperationResult.fail(f"Error retrieving issue: {exc}")
        return issue, OperationResult.ok("Retrieved issue details successfully", data=issue, url=issue.web_url)

    # -- Pull requests ---------------------------------------------------------

    async def list_pull_requests(self, state: PRState = PRState.OPEN, limit: int = 30) -> list[PullRequest]:
        return await self.github.list_pull_requests(self._require_repository(), state, limit)

    async def create_pull_request(self, title: str, body: str, head: str, base: str) -> OperationResult:
        repository = self._require_repository()
        try:
            output = await self.github.create_pull_request(repository, title, body, head, base)
        except AICollabError as exc:
            return OperationResult.fail(f"Error creating pull request: {exc}")
        return OperationResult.ok("Pull request created successfully", url=extract_url(output))

    async def review_pull_request(self, number: int, comment: str, action: str = "comment") -> OperationResult:
        repository = self._require_repository()
        try:
            await self.github.review_pull_request(repository, number, comment, action)
        except (AICollabError, ValueError) as exc:
            return OperationResult.fail(f"Error reviewing pull request: {exc}")
        return OperationResult.ok("Pull request reviewed successfully")

    # -- Analysis --------------------------------------------------------------

    async def analyze_repository(self, kind: str = "repository") -> str:
        """Markdown analysis of the active repository.

        *kind* is ``repository``, ``issues``, ``pull_requests`` or any custom
        label. Results are cached for an hour per (repository, kind).
        """
        repository = self._require_repository()
        key = f"{repository.full_name}|{kind}"
        cached = self._analysis_cache.get(key)
        if cached is not None:
            logger.debug("Analysis cache hit for %s", key)
            return cached

        if kind == "repository":
            analysis = await self._repository_overview(repository)
        elif kind == "issues":
            analysis = await self._issues_analysis(repository)
        elif kind == "pull_requests":
            analysis = await self._pull_requests_analysis(repository)
        else:
            analysis = await self._custom_analysis(repository, kind)

        analysis = await self._enhance(repository, analysis)
        self._analysis_cache.put(key, analysis)
        return analysis

    async def _enhance(self, repository: Repository, analysis: str) -> str:
        if self.ollama_agent is None:
            return analysis
        task = Task(
            description="Enhance GitHub repository analysis",
            query=(
                "Based on the following raw GitHub repository analysis, provide enhanced "
                f"insights, suggestions, and patterns:\n\n{analysis}"
            ),
            context={"repository_name": repository.full_name},
            required_capabilities=frozenset({Capability.TEXT_ANALYSIS, Capability.DATA_SUMMARIZATION}),
            priority=TaskPriority.NORMAL,
        )
        try:
            result = await self.ollama_agent.process_task(task)
        except AICollabError as exc:
            logger.warning("AI enhancement failed: %s. Using base analysis.", exc)
            return analysis
        if result.succeeded and result.text and not result.metadata.get("fallback"):
            return result.text
        return analysis

    async def _repository_overview(self, repository: Repository) -> str:
        lines = [f"# Repository Overview: {repository.full_name}", ""]
        try:
            info = await self.github.view_repository(repository.full_name, _OVERVIEW_FIELDS)
        except AICollabError as exc:
            lines += [f"Error retrieving repository information: {exc}", ""]
            info = None

        if info is not None:
            lines += ["## Description", "", info.get("description") or "No description provided.", ""]
            lines += [
                "## Repository Statistics",
                "",
                f"- **Stars:** {info.get('stargazerCount', 0)}",
                f"- **Forks:** {info.get('forkCount', 0)}",
                f"- **Created:** {_fmt_date(info.get('createdAt'))}",
                f"- **Last Push:** {_fmt_date(info.get('pushedAt'))}",
                f"- **Status:** {'Archived' if info.get('isArchived') else 'Active'}",
                "",
            ]
            topics = [t.get("name", t) if isinstance(t, dict) else t for t in info.get("topics") or []]
            lines += ["## Topics", ""]
            lines += [f"- {t}" for t in topics] or ["No topics defined."]
            lines.append("")
            languages = _languages(info.get("languages"))
            lines += ["## Languages", ""]
            lines += [f"- **{name}:** {size}" for name, size in languages] or [
                "No language information available."
            ]
            lines.append("")
            license_name = (info.get("licenseInfo") or {}).get("name")
            lines += ["## License", "", f"Licensed under {license_name}" if license_name
                      else "No license information available.", ""]

        lines += [
            "## Links",
            "",
            f"- **Repository:** {repository.web_url}",
            f"- **Clone URL (SSH):** {repository.ssh_url}",
            f"- **Clone URL (HTTPS):** {repository.https_url}",
            "",
            "## Default Branch",
            "",
            f"The default branch is `{repository.default_branch}`.",
        ]
        return "\n".join(lines)

    async def _issues_analysis(self, repository: Repository) -> str:
        lines = [f"# Issues Analysis: {repository.full_name}", ""]
        try:
            issues = await self.github.list_issues(repository, IssueState.OPEN, limit=100)
        except AICollabError as exc:
            return "\n".join(lines + [f"Error retrieving issue information: {exc}"])

        lines += ["## Open Issues", ""]
        if not issues:
            return "\n".join(lines + ["No open issues found."])
        lines += [f"Found {len(issues)} open issues.", ""]

        by_label: dict[str, list[Issue]] = {}
        for issue in issues:
            for label in issue.labels or ["unlabeled"]:
                by_label.setdefault(label, []).append(issue)
        for label in sorted(by_label):
            lines += [f"### {label} ({len(by_label[label])})", ""]
            for issue in by_label[label]:
                lines.append(f"- **#{issue.number}:** {issue.title} ({issue.creator or 'unknown'})")
            lines.append("")

        now = datetime.now(UTC)
        ages: Counter[str] = Counter()
        for issue in issues:
            days = (now - issue.created_at).days
            bucket = next((label for limit, label in _AGE_BUCKETS if days <= limit), "More than 365 days old")
            ages[bucket] += 1
        lines += ["### Issue Age Analysis", ""]
        for _, label in _AGE_BUCKETS:
            lines.append(f"- **{label}:** {ages[label]}")
        lines.append(f"- **More than 365 days old:** {ages['More than 365 days old']}")
        return "\n".join(lines)

    async def _pull_requests_analysis(self, repository: Repository) -> str:
        lines = [f"# Pull Request Analysis: {repository.full_name}", ""]
        try:
            open_prs = await self.github.list_pull_requests(repository, PRState.OPEN, limit=50)
            closed_prs = await self.github.list_pull_requests(repository, PRState.CLOSED, limit=5)
        except AICollabError as exc:
            return "\n".join(lines + [f"Error retrieving pull request information: {exc}"])

        lines += ["## Open Pull Requests", ""]
        if open_prs:
            lines += [f"Found {len(open_prs)} open pull requests.", ""]
            for pr in open_prs:
                lines += [
                    f"### PR #{pr.number}: {pr.title}",
                    f"- **Author:** {pr.creator}",
                    f"- **Branches:** {pr.source_branch} -> {pr.target_branch}",
                    f"- **URL:** {pr.web_url}",
                    "",
                ]
        else:
            lines += ["No open pull requests found.", ""]

        lines += ["## Recently Closed Pull Requests", ""]
        if closed_prs:
            for pr in closed_prs:
                status = "Merged" if pr.is_merged else "Closed without merging"
                lines.append(f"- **#{pr.number}:** {pr.title} ({status})")
        else:
            lines.append("No recently closed pull requests found.")
        return "\n".join(lines)

    async def _custom_analysis(self, repository: Repository, kind: str) -> str:
        lines = [f"# {kind.replace('_', ' ').title()} Analysis: {repository.full_name}", ""]
        lines.append(repository.description or "No description provided.")
        lines += ["", f"- **Default branch:** {repository.default_branch}",
                  f"- **Private:** {repository.is_private}", f"- **Fork:** {repository.is_fork}"]
        return "\n".join(lines)

    # -- Generic tasks ---------------------------------------------------------

    async def execute_task(self, task: Task) -> tuple[str, bool]:
        """Answer generic tasks with an analysis of the active repository."""
        kind = task.context.get("analysis_kind", "repository")
        return await self.analyze_repository(str(kind)), False

    def postprocess(self, text: str, task: Task) -> str:
        return text.strip()

    def release_resources(self) -> None:
        self._analysis_cache.clear()


def _fmt_date(raw: str | None) -> str:
    if not raw:
        return "unknown"
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except ValueError:
        return raw


def _languages(raw: Any) -> list[tuple[str, int]]:
    """Normalise gh's language payload to ``[(name, size)]``, largest first."""
    pairs: list[tuple[str, int]] = []
    if isinstance(raw, dict):
        pairs = [(str(k), int(v)) for k, v in raw.items()]
    elif isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, dict):
                node = entry.get("node") or {}
                pairs.append((str(node.get("name", "")), int(entry.get("size", 0))))
    return sorted(pairs, key=lambda p: p[1], reverse=True)
