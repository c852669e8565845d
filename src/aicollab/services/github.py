"""GitHub CLI (``gh``) wrapper returning structured repository, issue and PR records."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from aicollab.config.constants import DEFAULT_GH_PATH, MAX_RECENT_REPOSITORIES
from aicollab.exceptions import (
    GitHubCommandError,
    GitHubNotAuthenticated,
    GitHubParseError,
    RepositoryNotFound,
    ServiceUnavailable,
)

logger = logging.getLogger("aicollab.services.github")

_REPO_FIELDS = "owner,name,description,defaultBranchRef,isPrivate,hasIssuesEnabled,isFork"
# `gh search repos` names two of these differently
_SEARCH_FIELDS = "owner,name,description,defaultBranch,isPrivate,hasIssues,isFork"
_ISSUE_FIELDS = "number,title,body,state,author,assignees,labels,createdAt,updatedAt,closedAt"
_PR_FIELDS = (
    "number,title,body,state,author,assignees,labels,createdAt,updatedAt,closedAt,"
    "mergedAt,headRefName,baseRefName"
)


class IssueState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    ALL = "all"  # list filter only


class PRState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"
    ALL = "all"


class Repository(BaseModel, frozen=True):
    owner: str
    name: str
    default_branch: str = "main"
    description: str | None = None
    is_private: bool = False
    has_issues: bool = True
    is_fork: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def ssh_url(self) -> str:
        return f"git@github.com:{self.full_name}.git"

    @property
    def https_url(self) -> str:
        return f"https://github.com/{self.full_name}.git"

    @property
    def web_url(self) -> str:
        return f"https://github.com/{self.full_name}"

    @classmethod
    def from_full_name(cls, full_name: str) -> Repository:
        owner, sep, name = full_name.partition("/")
        if not sep or not owner or not name:
            raise RepositoryNotFound(full_name)
        return cls(owner=owner, name=name)

    @classmethod
    def from_gh(cls, data: dict[str, Any]) -> Repository:
        owner = data.get("owner") or {}
        branch = data.get("defaultBranch") or (data.get("defaultBranchRef") or {}).get("name")
        return cls(
            owner=owner.get("login", "") if isinstance(owner, dict) else str(owner),
            name=data.get("name", ""),
            default_branch=branch or "main",
            description=data.get("description") or None,
            is_private=bool(data.get("isPrivate", False)),
            has_issues=bool(data.get("hasIssuesEnabled", data.get("hasIssues", True))),
            is_fork=bool(data.get("isFork", False)),
        )


class Issue(BaseModel, frozen=True):
    number: int
    title: str
    body: str | None = None
    state: IssueState = IssueState.OPEN
    creator: str = ""
    assignees: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    repository: Repository

    @property
    def web_url(self) -> str:
        return f"https://github.com/{self.repository.full_name}/issues/{self.number}"

    @classmethod
    def from_gh(cls, data: dict[str, Any], repository: Repository) -> Issue:
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            body=data.get("body") or None,
            state=str(data.get("state", "open")).lower(),
            creator=(data.get("author") or {}).get("login", ""),
            assignees=[a.get("login", "") for a in data.get("assignees") or []],
            labels=[lbl.get("name", "") for lbl in data.get("labels") or []],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            closed_at=data.get("closedAt") or None,
            repository=repository,
        )


class PullRequest(BaseModel, frozen=True):
    number: int
    title: str
    body: str | None = None
    state: PRState = PRState.OPEN
    creator: str = ""
    assignees: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    merged_at: datetime | None = None
    source_branch: str = ""
    target_branch: str = ""
    repository: Repository

    @property
    def web_url(self) -> str:
        return f"https://github.com/{self.repository.full_name}/pull/{self.number}"

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None

    @classmethod
    def from_gh(cls, data: dict[str, Any], repository: Repository) -> PullRequest:
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            body=data.get("body") or None,
            state=str(data.get("state", "open")).lower(),
            creator=(data.get("author") or {}).get("login", ""),
            assignees=[a.get("login", "") for a in data.get("assignees") or []],
            labels=[lbl.get("name", "") for lbl in data.get("labels") or []],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            closed_at=data.get("closedAt") or None,
            merged_at=data.get("mergedAt") or None,
            source_branch=data.get("headRefName", ""),
            target_branch=data.get("baseRefName", ""),
            repository=repository,
        )


def _repo_arg(args: list[str]) -> str:
    if "--repo" in args:
        i = args.index("--repo")
        if i + 1 < len(args):
            return args[i + 1]
    return args[2] if len(args) > 2 else ""


def _parse_json(output: str) -> Any:
    try:
        return json.loads(output)
    except json.JSONDecodeError as exc:
        raise GitHubParseError(str(exc)) from exc


class GitHubService:
    """Runs ``gh`` as a subprocess and parses its ``--json`` output."""

    def __init__(
        self,
        cli_path: str = DEFAULT_GH_PATH,
        max_recent_repositories: int = MAX_RECENT_REPOSITORIES,
    ) -> None:
        self._cli_path = cli_path
        self._max_recent = max_recent_repositories
        self.active_repository: Repository | None = None
        self.recent_repositories: list[Repository] = []

    # -- Command execution -----------------------------------------------------

    async def run_command(self, args: list[str]) -> str:
        """Run ``gh <args>`` and return stdout.

        Raises GitHubCommandError (with the exit code) when the command fails.
        """
        command = " ".join(["gh", *args])
        logger.debug("Running: %s", command)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._cli_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ServiceUnavailable(f"{self._cli_path} not found", service="github") from exc

        stdout, stderr = await proc.communicate()
        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        if proc.returncode != 0:
            if "gh auth login" in err:
                raise GitHubNotAuthenticated()
            if "Could not resolve to a Repository" in err:
                raise RepositoryNotFound(_repo_arg(args))
            raise GitHubCommandError(command, proc.returncode or -1, err.strip())
        return out

    async def check_availability(self) -> bool:
        """True if ``gh`` is installed and logged in."""
        try:
            await self.run_command(["auth", "status"])
        except (GitHubCommandError, GitHubNotAuthenticated, ServiceUnavailable) as exc:
            logger.debug("GitHub CLI not available: %s", exc)
            return False
        return True

    # -- Repositories ----------------------------------------------------------

    async def search_repositories(self, query: str = "", limit: int = 10) -> list[Repository]:
        """Search all of GitHub for *query*; an empty query lists your own repositories."""
        if query:
            args = ["search", "repos", query, "--json", _SEARCH_FIELDS, "--limit", str(limit)]
        else:
            args = ["repo", "list", "--json", _REPO_FIELDS, "--limit", str(limit)]
        data = _parse_json(await self.run_command(args))
        return [Repository.from_gh(item) for item in data]

    async def get_repository_details(self, full_name: str) -> Repository:
        data = _parse_json(await self.run_command(["repo", "view", full_name, "--json", _REPO_FIELDS]))
        return Repository.from_gh(data)

    async def view_repository(self, full_name: str, fields: str) -> dict[str, Any]:
        """Raw ``gh repo view --json <fields>`` payload."""
        return _parse_json(await self.run_command(["repo", "view", full_name, "--json", fields]))

    def set_active_repository(self, repository: Repository) -> None:
        """Make *repository* active and move it to the front of the recent list."""
        self.active_repository = repository
        self.recent_repositories = [
            r for r in self.recent_repositories if r.full_name != repository.full_name
        ]
        self.recent_repositories.insert(0, repository)
        del self.recent_repositories[self._max_recent:]
        logger.info("Active repository: %s", repository.full_name)

    # -- Issues ----------------------------------------------------------------

    async def list_issues(
        self, repository: Repository, state: IssueState = IssueState.OPEN, limit: int = 30
    ) -> list[Issue]:
        args = [
            "issue", "list",
            "--repo", repository.full_name,
            "--state", str(state),
            "--limit", str(limit),
            "--json", _ISSUE_FIELDS,
        ]
        data = _parse_json(await self.run_command(args))
        return [Issue.from_gh(item, repository) for item in data]

    async def get_issue(self, repository: Repository, number: int) -> Issue:
        args = ["issue", "view", str(number), "--repo", repository.full_name, "--json", _ISSUE_FIELDS]
        return Issue.from_gh(_parse_json(await self.run_command(args)), repository)

    async def create_issue(
        self, repository: Repository, title: str, body: str, labels: list[str] | None = None
    ) -> str:
        """Create an issue and return gh's output (the new issue URL)."""
        args = ["issue", "create", "--repo", repository.full_name, "--title", title, "--body", body]
        if labels:
            args += ["--label", ",".join(labels)]
        return (await self.run_command(args)).strip()

    # -- Pull requests ---------------------------------------------------------

    async def list_pull_requests(
        self, repository: Repository, state: PRState = PRState.OPEN, limit: int = 30
    ) -> list[PullRequest]:
        args = [
            "pr", "list",
            "--repo", repository.full_name,
            "--state", str(state),
            "--limit", str(limit),
            "--json", _PR_FIELDS,
        ]
        data = _parse_json(await self.run_command(args))
        return [PullRequest.from_gh(item, repository) for item in data]

    async def create_pull_request(
        self, repository: Repository, title: str, body: str, head: str, base: str
    ) -> str:
        args = [
            "pr", "create",
            "--repo", repository.full_name,
            "--title", title,
            "--body", body,
            "--head", head,
            "--base", base,
        ]
        return (await self.run_command(args)).strip()

    async def review_pull_request(
        self, repository: Repository, number: int, comment: str, action: str = "comment"
    ) -> str:
        """Review a PR. *action* is one of ``comment``, ``approve``, ``request-changes``."""
        if action not in ("comment", "approve", "request-changes"):
            raise ValueError(f"Unknown review action: {action}")
        args = [
            "pr", "review", str(number),
            "--repo", repository.full_name,
            "--body", comment,
            f"--{action}",
        ]
        return (await self.run_command(args)).strip()
