"""
KodeGraph CLI - Main entry point for the application.

This module defines the command-line interface using Typer.
"""

import json
from datetime import datetime
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from .config import ConfigError, load_config
from .entities import InvalidRequestError, RelationshipDirection
from .graph_store import GraphStoreError
from .indexing import IndexingError, IndexState
from .logging import configure_logging
from .repository_manager import RepositoryError
from .schema import SchemaError
from .search import SearchResultFormatter
from .service import KnowledgeService, build_service

# Create the main Typer application
app = typer.Typer(
    name="kg",
    help="🕸️  KodeGraph - Code Knowledge Graph for Java repositories\n\n"
    "Index repositories into a searchable graph of types, methods and fields.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Initialize Rich console for beautiful output
console = Console()

# Errors a command reports in red before exiting with status 1
USER_ERRORS = (
    ConfigError,
    InvalidRequestError,
    IndexingError,
    RepositoryError,
    GraphStoreError,
    SchemaError,
)

STATE_STYLES = {
    IndexState.UP_TO_DATE: "[green]✅ Up to date[/green]",
    IndexState.OUTDATED: "[yellow]🔄 Outdated[/yellow]",
    IndexState.INDEXING: "[cyan]⏳ Indexing[/cyan]",
    IndexState.NOT_INDEXED: "[dim]❌ Not indexed[/dim]",
    IndexState.FAILED: "[red]💥 Failed[/red]",
}


def get_service() -> KnowledgeService:
    """Build the service from configuration; replaced in tests."""
    config = load_config()
    configure_logging(config=config.logging)
    return build_service(config)


def _fail(message: str, error: Exception) -> None:
    console.print(f"[red]❌ {message}:[/red] {str(error)}")
    raise typer.Exit(1) from error


def _relative_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return "[dim]Never[/dim]"
    diff = datetime.now() - moment
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.seconds > 3600:
        return f"{diff.seconds // 3600}h ago"
    if diff.seconds > 60:
        return f"{diff.seconds // 60}m ago"
    return "Just now"


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        from . import __version__

        rprint(f"[bold blue]KodeGraph[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    _version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    )
) -> None:
    """
    🕸️  KodeGraph - Code Knowledge Graph for Java repositories

    Index a repository once, then ask structural and semantic questions about it.
    """
    pass


@app.command()
def index(
    repo_url: str = typer.Argument(..., help="Repository URL or local path"),
    branch: Optional[str] = typer.Option(
        None, "-b", "--branch", help="Branch to index (default from config or URL)"
    ),
    force: bool = typer.Option(
        False, "--force", help="Reindex even if the stored commit is current"
    ),
) -> None:
    """
    🗂️  Index a repository branch into the knowledge graph.

    Examples:
        kg index https://github.com/spring-projects/spring-petclinic
        kg index https://github.com/acme/shop/tree/develop
        kg index ~/code/shop --branch main --force
    """
    try:
        service = get_service()
        console.print(f"[yellow]🗂️  Indexing repository:[/yellow] {repo_url}")

        with console.status("[cyan]Cloning, parsing and embedding...", spinner="dots"):
            if force:
                record = service.get_repository_by_url(repo_url, branch)
                if record is None:
                    repository_id = service.ensure_indexed(repo_url, branch)
                    result = None
                else:
                    result = service.reindex_repository(record.id)
                    repository_id = result.repository_id
            else:
                repository_id = service.ensure_indexed(repo_url, branch)
                result = None

        console.print(f"[green]✅ Indexed:[/green] {repository_id}")
        if result is not None:
            console.print(
                f"[dim]📊 {result.entities_created} entities • "
                f"{result.relationships_created} relationships • "
                f"{len(result.failed_files)} failed files • {result.duration_ms} ms[/dim]"
            )
        progress = service.get_indexing_progress(repository_id)
        if progress is not None:
            console.print(f"[dim]ℹ️  {progress.current_step}[/dim]")

    except IndexingError as e:
        console.print(f"[red]❌ Indexing failed:[/red] {str(e)}")
        for error in e.errors:
            console.print(f"[dim]  - {error}[/dim]")
        raise typer.Exit(1) from e
    except USER_ERRORS as e:
        _fail("Error", e)


@app.command()
def status(
    repo_url: str = typer.Argument(..., help="Repository URL or local path"),
    branch: Optional[str] = typer.Option(None, "-b", "--branch", help="Branch to check"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """
    🔎 Show whether a repository branch is indexed and current.
    """
    try:
        service = get_service()
        index_status = service.check_index_status(repo_url, branch)
    except USER_ERRORS as e:
        _fail("Error checking status", e)

    if json_output:
        print(
            json.dumps(
                {
                    "state": index_status.state.value,
                    "repository_id": index_status.repository_id,
                    "stored_commit": index_status.stored_commit,
                    "current_commit": index_status.current_commit,
                    "last_indexed_at": (
                        index_status.last_indexed_at.isoformat()
                        if index_status.last_indexed_at
                        else None
                    ),
                    "error": index_status.error,
                },
                indent=2,
            )
        )
        return

    console.print(f"[blue]📂 Repository:[/blue] {repo_url}")
    console.print(f"[blue]📌 State:[/blue] {STATE_STYLES[index_status.state]}")
    if index_status.repository_id:
        console.print(f"[dim]🆔 Id: {index_status.repository_id}[/dim]")
    if index_status.stored_commit:
        console.print(f"[dim]💾 Stored commit: {index_status.stored_commit}[/dim]")
    if index_status.current_commit:
        console.print(f"[dim]🌐 Current commit: {index_status.current_commit}[/dim]")
    if index_status.last_indexed_at:
        console.print(
            f"[dim]🕒 Last indexed: {_relative_time(index_status.last_indexed_at)}[/dim]"
        )
    if index_status.error:
        console.print(f"[red]⚠️  {index_status.error}[/red]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Question or identifier to search for"),
    repo: Optional[List[str]] = typer.Option(
        None, "-r", "--repo", help="Restrict to repository id (repeatable)"
    ),
    mode: Optional[str] = typer.Option(
        None, "-m", "--mode", help="structural, semantic, temporal or hybrid"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum number of results"),
    json_output: bool = typer.Option(False, "--json", help="Output results in JSON format"),
) -> None:
    """
    🔍 Search the knowledge graph.

    Examples:
        kg search PaymentService                      # Exact name match
        kg search "how are refunds processed"         # Semantic
        kg search "who calls OrderRepository" -m structural
    """
    try:
        service = get_service()
        with console.status("[cyan]Searching...", spinner="dots"):
            results = service.search(
                query, repository_ids=repo or [], preferred_mode=mode, max_results=limit
            )
    except USER_ERRORS as e:
        _fail("Search failed", e)

    if json_output:
        print(
            json.dumps(
                {
                    "query": query,
                    "total_matches": len(results),
                    "results": [result.to_dict() for result in results],
                },
                indent=2,
            )
        )
        return

    if not results:
        console.print("[yellow]No matches found[/yellow]")
        return

    console.print(f"[green]✅ Found {len(results)} matches[/green]")
    console.print(SearchResultFormatter(console).format_results_table(results, query))


@app.command()
def deps(
    entity_id: str = typer.Argument(..., help="Entity id to inspect"),
    direction: str = typer.Option(
        "BOTH", "-d", "--direction", help="incoming, outgoing or both"
    ),
    depth: int = typer.Option(1, "--depth", help="Traversal depth (direct only)"),
) -> None:
    """
    🧭 Show the direct relationships of an entity.
    """
    try:
        rel_direction = RelationshipDirection(direction.upper())
    except ValueError as e:
        _fail("Invalid direction", e)

    try:
        service = get_service()
        result = service.find_dependencies(entity_id, depth, rel_direction)
    except USER_ERRORS as e:
        _fail("Error", e)

    if not result.dependencies:
        console.print("[yellow]No relationships found[/yellow]")
        return

    console.print(SearchResultFormatter(console).format_dependencies_table(result))
    if depth > 1:
        console.print("[dim]💡 Only direct relationships are shown[/dim]")


@app.command()
def explain(
    from_id: str = typer.Argument(..., help="Entity id to start from"),
    to_id: str = typer.Argument(..., help="Entity id to reach"),
) -> None:
    """
    🔗 Explain how two entities are connected.
    """
    try:
        service = get_service()
        explanation = service.explain_relationship(from_id, to_id)
    except USER_ERRORS as e:
        _fail("Error", e)

    style = "green" if explanation.found else "yellow"
    console.print(f"[{style}]{explanation.explanation}[/{style}]")
    for step in explanation.path:
        console.print(
            f"[dim]  {step.entity.entity_type.value:<14} "
            f"{step.entity.fully_qualified_name or step.entity.name}[/dim]"
        )


@app.command(name="list")
def list_repositories(
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format")
) -> None:
    """
    📋 List all indexed repositories.
    """
    try:
        service = get_service()
        repositories = service.list_repositories()
    except USER_ERRORS as e:
        _fail("Error listing repositories", e)

    if not repositories:
        console.print("[yellow]📋 No repositories indexed yet[/yellow]")
        console.print("[dim]💡 Index your first repository with: kg index <repo-url>[/dim]")
        return

    if json_output:
        repo_data = [
            {
                "id": repo.id,
                "url": repo.url,
                "branch": repo.branch,
                "language": repo.language,
                "last_indexed_commit": repo.last_indexed_commit,
                "last_indexed_at": (
                    repo.last_indexed_at.isoformat() if repo.last_indexed_at else None
                ),
            }
            for repo in repositories
        ]
        print(json.dumps(repo_data, indent=2))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("URL", style="blue", max_width=50)
    table.add_column("Branch", style="white")
    table.add_column("Commit", style="yellow")
    table.add_column("Last Indexed", style="green")

    for repo in repositories:
        table.add_row(
            repo.id,
            repo.url,
            repo.branch,
            (repo.last_indexed_commit or "")[:10],
            _relative_time(repo.last_indexed_at),
        )

    console.print(table)
    console.print(f"[dim]📊 {len(repositories)} repositories[/dim]")


@app.command()
def info(repository_id: str = typer.Argument(..., help="Repository id")) -> None:
    """
    ℹ️  Show a repository record with its entity counts.
    """
    try:
        service = get_service()
        details = service.repository_info(repository_id)
    except USER_ERRORS as e:
        _fail("Error", e)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key, value in details.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def remove(
    repository_id: str = typer.Argument(..., help="Repository id to remove"),
    force: bool = typer.Option(False, "--force", help="Skip confirmation prompt"),
) -> None:
    """
    🗑️  Remove a repository and all of its entities from the graph.
    """
    try:
        service = get_service()
        details = service.repository_info(repository_id)
    except USER_ERRORS as e:
        _fail("Error", e)

    console.print(f"[yellow]🗑️  Repository to remove:[/yellow] {details['url']} ({details['branch']})")

    if not force:
        confirm = typer.confirm(f"Are you sure you want to remove '{repository_id}'?")
        if not confirm:
            console.print("[blue]ℹ️  Operation cancelled[/blue]")
            raise typer.Exit()

    try:
        service.remove_repository(repository_id)
    except USER_ERRORS as e:
        _fail("Error removing repository", e)

    console.print(f"[green]✅ Removed repository {repository_id}[/green]")


@app.command()
def doctor() -> None:
    """
    🩺 Validate the graph database and show statistics.
    """
    try:
        service = get_service()
        validation = service.validate()
        stats = service.statistics()
    except USER_ERRORS as e:
        _fail("Error validating database", e)

    table = Table(title="Schema", show_header=True, header_style="bold magenta")
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="white")
    for key, value in validation.items():
        if isinstance(value, bool):
            value = "[green]✅[/green]" if value else "[red]❌[/red]"
        elif isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, str(value))
    console.print(table)

    stats_table = Table(title="Statistics", show_header=True, header_style="bold magenta")
    stats_table.add_column("Metric", style="cyan")
    stats_table.add_column("Value", justify="right", style="yellow")
    for key, value in stats.items():
        stats_table.add_row(key, str(value))
    console.print(stats_table)

    if not validation.get("data_integrity", False):
        console.print("[red]⚠️  Integrity problems found[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
