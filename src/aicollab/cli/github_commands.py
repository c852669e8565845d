"""CLI commands for GitHub repositories: list, issues, analyze."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from aicollab.config.settings import Settings, get_settings
from aicollab.exceptions import AICollabError

app = typer.Typer(
    name="gh",
    help="Browse and analyze GitHub repositories through the gh CLI.",
    no_args_is_help=True,
)
console = Console()


def _get_service(settings: Settings):
    """Create a GitHubService from settings."""
    from aicollab.services.github import GitHubService

    return GitHubService(
        cli_path=settings.github.cli_path,
        max_recent_repositories=settings.github.max_recent_repositories,
    )


def _get_ollama_agent(settings: Settings):
    from aicollab.agents.ollama import OllamaAgent
    from aicollab.services.ollama import OllamaService

    service = OllamaService(
        base_url=settings.ollama.base_url,
        timeout=settings.ollama.request_timeout,
        models_cache_ttl=settings.ollama.models_cache_ttl,
    )
    return OllamaAgent.from_defaults(
        service, settings.agent, model_name=settings.ollama.default_model or None
    )


def _resolve_repo(repo: str, settings: Settings) -> str:
    repo = repo or settings.github.default_repository
    if not repo or "/" not in repo:
        console.print("[red]Pass a repository as owner/name or set github.default_repository.[/red]")
        raise typer.Exit(1)
    return repo


@app.command("repos")
def list_repos(
    query: str = typer.Argument("", help="Search filter"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum repositories to list"),
):
    """List your repositories."""
    service = _get_service(get_settings())
    try:
        repos = asyncio.run(service.search_repositories(query, limit))
    except AICollabError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if not repos:
        console.print("[dim]No repositories found.[/dim]")
        raise typer.Exit()

    table = Table(title="Repositories")
    table.add_column("Repository", style="bold")
    table.add_column("Branch", style="dim")
    table.add_column("Visibility")
    table.add_column("Description", max_width=50)
    for repo in repos:
        visibility = "[yellow]private[/yellow]" if repo.is_private else "public"
        table.add_row(repo.full_name, repo.default_branch, visibility, repo.description or "")
    console.print(table)


@app.command("issues")
def list_issues(
    repo: str = typer.Argument("", help="owner/name (defaults to github.default_repository)"),
    state: str = typer.Option("open", "--state", "-s", help="open, closed or all"),
    limit: int = typer.Option(30, "--limit", "-n", help="Maximum issues to list"),
):
    """List issues for a repository."""
    from aicollab.services.github import IssueState, Repository

    settings = get_settings()
    full_name = _resolve_repo(repo, settings)
    try:
        issue_state = IssueState(state.lower())
    except ValueError:
        console.print(f"[red]Unknown state: {state}[/red]")
        raise typer.Exit(1)

    service = _get_service(settings)
    try:
        issues = asyncio.run(
            service.list_issues(Repository.from_full_name(full_name), issue_state, limit)
        )
    except AICollabError as exc:
        console.print(f"[red]{exc}[/red]")
        if exc.recovery_suggestion:
            console.print(f"[dim]{exc.recovery_suggestion}[/dim]")
        raise typer.Exit(1)

    if not issues:
        console.print(f"[dim]No {issue_state} issues in {full_name}.[/dim]")
        raise typer.Exit()

    table = Table(title=f"Issues: {full_name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", style="bold", max_width=60)
    table.add_column("State")
    table.add_column("Author")
    table.add_column("Labels", style="dim")
    for issue in issues:
        table.add_row(
            str(issue.number),
            issue.title,
            issue.state.value,
            issue.creator or "-",
            ", ".join(issue.labels),
        )
    console.print(table)


@app.command("analyze")
def analyze(
    repo: str = typer.Argument("", help="owner/name (defaults to github.default_repository)"),
    kind: str = typer.Option(
        "repository", "--kind", "-k", help="repository, issues, pull_requests or a custom label"
    ),
    enhance: bool = typer.Option(False, "--enhance", "-e", help="Refine the analysis with Ollama"),
):
    """Print a markdown analysis of a repository."""
    settings = get_settings()
    full_name = _resolve_repo(repo, settings)
    try:
        text = asyncio.run(_analyze(settings, full_name, kind, enhance))
    except AICollabError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    console.print(Markdown(text))


async def _analyze(settings: Settings, full_name: str, kind: str, enhance: bool) -> str:
    from aicollab.agents.github import GitHubAgent

    agent = GitHubAgent(
        _get_service(settings),
        ollama_agent=_get_ollama_agent(settings) if enhance else None,
    )
    await agent.get_repository_details(full_name)
    try:
        return await agent.analyze_repository(kind)
    finally:
        await agent.shutdown()
