"""Command line interface for CodeCompass."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from codecompass.config import AppConfig
from codecompass.exceptions import CodeCompassError
from codecompass.index.indexer import IndexStats
from codecompass.models import IndexProgress, SearchResult
from codecompass.service import CodeCompass

console = Console()
app = typer.Typer(help="CodeCompass - semantic search and Q&A over source code")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(
    embedding_provider: Optional[str] = None,
    generation_provider: Optional[str] = None,
    qdrant_url: Optional[str] = None,
) -> AppConfig:
    try:
        return AppConfig.from_env(
            embedding_provider=embedding_provider,
            generation_provider=generation_provider,
            qdrant_url=qdrant_url,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open_service(project: Path, config: AppConfig) -> CodeCompass:
    if not project.is_dir():
        raise typer.BadParameter(f"Project directory not found: {project}")
    return CodeCompass(project, config)


def _print_stats(stats: IndexStats) -> None:
    console.print(
        f"Indexed: {stats.indexed}, skipped: {stats.skipped}, failed: {stats.failed}"
    )
    if stats.aborted:
        console.print("[red]Indexing aborted: services became unreachable.[/red]")
    elif stats.cancelled:
        console.print("[yellow]Indexing cancelled.[/yellow]")


def _run_index(project: Path, config: AppConfig, *, full: bool) -> IndexStats:
    service = _open_service(project, config)
    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            console=console,
        ) as bar:
            task = bar.add_task("Indexing", total=None)

            def report(update: IndexProgress) -> None:
                name = update.current_file.name if update.current_file else ""
                bar.update(task, total=update.total, completed=update.processed, description=f"Indexing {name}")

            if full:
                stats = service.reindex_all(progress=report)
            else:
                stats = service.index_project(progress=report)
    finally:
        service.close()
    return stats


_PROJECT_OPTION = typer.Option(Path("."), "--project", "-p", help="Project root", resolve_path=True)
_EMBEDDING_OPTION = typer.Option(None, "--embedding-provider", help="ollama, gemini or local")
_GENERATION_OPTION = typer.Option(None, "--generation-provider", help="ollama, gemini or openrouter")
_QDRANT_OPTION = typer.Option(None, "--qdrant-url", help="Qdrant base URL")
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def index(
    project: Path = typer.Argument(..., help="Project root to index.", resolve_path=True),
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    generation_provider: Optional[str] = _GENERATION_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Index (or update) every source file under a project."""
    _setup_logging(verbose)
    config = _load_config(embedding_provider, generation_provider, qdrant_url)
    console.print(f"Indexing [bold]{project}[/bold] into {config.qdrant_url}...")
    stats = _run_index(project, config, full=False)
    _print_stats(stats)
    if stats.aborted:
        raise typer.Exit(code=1)


@app.command()
def reindex(
    project: Path = typer.Argument(..., help="Project root to reindex.", resolve_path=True),
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    generation_provider: Optional[str] = _GENERATION_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Delete the existing index and rebuild it from scratch."""
    _setup_logging(verbose)
    config = _load_config(embedding_provider, generation_provider, qdrant_url)
    console.print(f"Rebuilding index for [bold]{project}[/bold]...")
    stats = _run_index(project, config, full=True)
    _print_stats(stats)
    if stats.aborted:
        raise typer.Exit(code=1)


def _results_table(results: List[SearchResult]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("File")
    table.add_column("Language")
    table.add_column("Summary")
    for result in results:
        summary = result.summary.replace("\n", " ")
        table.add_row(f"{result.similarity:.4f}", result.file_path, result.language, summary[:180])
    return table


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    project: Path = _PROJECT_OPTION,
    limit: int = typer.Option(10, help="Number of results to display"),
    threshold: Optional[float] = typer.Option(None, help="Minimum similarity (0-1)"),
    language: Optional[str] = typer.Option(None, help="Only files of this language, e.g. Python"),
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Execute a semantic search over an indexed project."""
    _setup_logging(verbose)
    config = _load_config(embedding_provider, None, qdrant_url)
    service = _open_service(project, config)
    try:
        filters = {"language": language} if language else None
        results = service.search(query, limit=limit, filters=filters, threshold=threshold)
    finally:
        service.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return
    console.print(_results_table(results))


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the code base"),
    project: Path = _PROJECT_OPTION,
    limit: int = typer.Option(5, help="Number of files to retrieve"),
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    generation_provider: Optional[str] = _GENERATION_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Answer a question using the most relevant files."""
    _setup_logging(verbose)
    config = _load_config(embedding_provider, generation_provider, qdrant_url)
    service = _open_service(project, config)
    try:
        answer, results = service.ask(question, limit=limit)
    except CodeCompassError as exc:
        console.print(f"[red]Could not answer: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    console.print(answer)
    if results:
        console.print("\n[bold]Relevant files:[/bold]")
        for result in results:
            console.print(f"  {result.file_path} ({result.similarity:.2f})")


@app.command()
def count(
    project: Path = _PROJECT_OPTION,
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
) -> None:
    """Show how many files are indexed for a project."""
    config = _load_config(embedding_provider, None, qdrant_url)
    service = _open_service(project, config)
    try:
        console.print(f"Indexed documents: {service.document_count()}")
    finally:
        service.close()


@app.command()
def health(
    project: Path = _PROJECT_OPTION,
    embedding_provider: Optional[str] = _EMBEDDING_OPTION,
    generation_provider: Optional[str] = _GENERATION_OPTION,
    qdrant_url: Optional[str] = _QDRANT_OPTION,
) -> None:
    """Check that the embedding, generation and vector services are reachable."""
    config = _load_config(embedding_provider, generation_provider, qdrant_url)
    service = _open_service(project, config)
    try:
        status = service.check_services()
    finally:
        service.close()

    for name, available in status.as_dict().items():
        mark = "[green]available[/green]" if available else "[red]unavailable[/red]"
        console.print(f"{name}: {mark}")
    if not status.all_available:
        raise typer.Exit(code=1)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from codecompass.web.app import app as web_app

    console.print(f"Starting HTTP API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
