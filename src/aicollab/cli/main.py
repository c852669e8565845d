"""aicollab CLI: the main entry point."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from aicollab import __version__
from aicollab.cli.github_commands import _get_service as _github_service
from aicollab.cli.github_commands import app as github_app
from aicollab.config.settings import Settings, get_settings

app = typer.Typer(
    name="aicollab",
    help="Dispatch tasks to capability-matched AI agents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
app.add_typer(github_app, name="gh")
console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main_callback(
    version: bool = typer.Option(False, "--version", "-v", help="Show version"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
):
    if version:
        console.print(f"aicollab v{__version__}")
        raise typer.Exit()
    _configure_logging("DEBUG" if verbose else get_settings().log_level)


def _ollama_service(settings: Settings):
    from aicollab.services.ollama import OllamaService

    return OllamaService(
        base_url=settings.ollama.base_url,
        timeout=settings.ollama.request_timeout,
        models_cache_ttl=settings.ollama.models_cache_ttl,
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@app.command()
def status():
    """Show configuration and backend availability."""
    settings = get_settings()
    ollama_ok, gh_ok = asyncio.run(_check_backends(settings))

    def _flag(ok: bool) -> str:
        return "[green]available[/green]" if ok else "[red]unavailable[/red]"

    console.print()
    console.print(f"  [bold]Ollama:[/bold]    {settings.ollama.base_url} ({_flag(ollama_ok)})")
    console.print(f"  [bold]Model:[/bold]     {settings.ollama.default_model or '[dim]not set[/dim]'}")
    console.print(f"  [bold]GitHub:[/bold]    {settings.github.cli_path} ({_flag(gh_ok)})")
    console.print(f"  [bold]Timeout:[/bold]   {settings.collaborator.default_task_timeout:g}s")
    console.print(f"  [bold]History:[/bold]   {settings.collaborator.max_history_size} entries")
    console.print(f"  [bold]Context:[/bold]   {settings.context_file or '[dim]in-memory[/dim]'}")
    console.print()


async def _check_backends(settings: Settings) -> tuple[bool, bool]:
    ollama_ok, gh_ok = await asyncio.gather(
        _ollama_service(settings).check_availability(),
        _github_service(settings).check_availability(),
    )
    return ollama_ok, gh_ok


# ---------------------------------------------------------------------------
# models
# ---------------------------------------------------------------------------


@app.command()
def models(
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Bypass the model list cache"),
):
    """List models installed on the Ollama server."""
    from aicollab.agents.ollama import ModelFamily
    from aicollab.exceptions import AICollabError

    settings = get_settings()
    try:
        installed = asyncio.run(_ollama_service(settings).list_models(force_refresh=refresh))
    except AICollabError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if not installed:
        console.print("[dim]No models installed. Pull one with: ollama pull llama3[/dim]")
        raise typer.Exit()

    table = Table(title="Ollama Models")
    table.add_column("Name", style="bold")
    table.add_column("Family")
    table.add_column("Parameters", justify="right")
    table.add_column("Size", justify="right")
    for m in installed:
        table.add_row(
            m.name,
            ModelFamily.detect(m.name).value,
            m.parameter_size or "-",
            f"{m.size / 1e9:.1f} GB" if m.size else "-",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


@app.command()
def ask(
    query: str = typer.Argument(help="What to ask"),
    capability: list[str] = typer.Option(
        None, "--capability", "-c",
        help="Required capability (repeatable), e.g. text_analysis or custom:foo",
    ),
    model: str = typer.Option("", "--model", "-m", help="Ollama model (defaults to settings)"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds before the task times out"),
):
    """Run one task through a Collaborator backed by an Ollama agent."""
    from aicollab.tasks.models import capability_set

    settings = get_settings()
    try:
        caps = capability_set(capability or ["basic_completion"])
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    result = asyncio.run(_ask(settings, query, caps, model or settings.ollama.default_model, timeout))

    if result.succeeded:
        console.print(result.text)
        if result.metadata.get("fallback"):
            console.print("[yellow]Backend unavailable, fallback response shown.[/yellow]")
        return
    console.print(f"[red]{result.status}:[/red] {result.error}")
    raise typer.Exit(1)


async def _ask(settings: Settings, query: str, caps, model: str, timeout: float | None):
    from aicollab.agents.ollama import OllamaAgent
    from aicollab.context.store import ContextStore
    from aicollab.core.collaborator import Collaborator

    context = None
    context_path = Path(settings.context_file).expanduser() if settings.context_file else None
    if context_path is not None:
        context = ContextStore.load(context_path, settings.collaborator.max_history_size)

    collaborator = Collaborator(settings.collaborator, context=context)
    collaborator.register(
        OllamaAgent.from_defaults(_ollama_service(settings), settings.agent, model_name=model or None)
    )
    task = collaborator.create_task(query, caps)
    result = await collaborator.execute(task, timeout=timeout)
    await collaborator.shutdown()

    if context_path is not None:
        collaborator.context.save(context_path)
    return result


if __name__ == "__main__":
    app()
