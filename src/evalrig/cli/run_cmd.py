"""evalrig run -- execute eval files and report the verdict.

Discovers ``*.eval.py`` files, builds the RunConfig from evalrig.yaml
plus CLI overrides, runs them through the Orchestrator, renders the
Rich results table and exits 1 when the run fails.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from evalrig.cache.store import FileCacheStore
from evalrig.cli.output import output_json, render_eval_table, render_summary
from evalrig.evaluation.aggregation import RunSummary
from evalrig.execution.loader import discover_eval_files
from evalrig.execution.orchestrator import Orchestrator
from evalrig.models.config import RunConfig, find_project_root, load_run_config
from evalrig.storage import create_storage

console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def run(
    paths: Optional[list[Path]] = typer.Argument(None, help="Eval files or directories (default: project root)"),
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0, max=100, help="Minimum average score, 0-100"),
    trial_count: Optional[int] = typer.Option(None, "--trial-count", min=1, help="Trials per data row"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Max concurrently running tasks"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-task timeout in milliseconds"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Disable the model call cache"),
    storage: Optional[str] = typer.Option(None, "--storage", help="SQLite path, or :memory:"),
    format_json: bool = typer.Option(False, "--json", help="Output pure JSON to stdout"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging, including cache hits"),
) -> None:
    """Run evals and display results."""
    configure_logging(verbose)

    project_root = find_project_root()
    config = load_run_config(project_root)
    overrides = {
        "score_threshold": threshold,
        "trial_count": trial_count,
        "max_concurrency": concurrency,
        "test_timeout_ms": timeout,
        "storage": storage,
    }
    config = config.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    if no_cache:
        config = config.model_copy(update={"cache_enabled": False})

    try:
        files = discover_eval_files(paths or [project_root])
    except FileNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if not files:
        console.print("[yellow]No *.eval.py files found.[/yellow]")
        raise typer.Exit(code=1)

    summary = asyncio.run(_run_async(files, config, project_root))

    if format_json:
        output_json(summary)
    else:
        output_console = Console()
        if not config.hide_table:
            render_eval_table(summary, output_console)
        render_summary(summary, output_console)
        if summary.run_id is not None:
            output_console.print(f"[dim]Run saved: {summary.run_id}[/dim]")

    if not summary.success:
        raise typer.Exit(code=1)


async def _run_async(files: list[Path], config: RunConfig, project_root: Path) -> RunSummary:
    """Async implementation of the run command."""
    storage = create_storage(config.resolve_path(config.storage, project_root))
    cache_store = None
    if config.cache_enabled:
        cache_store = FileCacheStore(config.resolve_path(config.cache_dir, project_root))

    async with storage:
        orchestrator = Orchestrator(
            config=config,
            storage=storage,
            cache_store=cache_store,
            files_dir=config.resolve_path(config.files_dir, project_root),
        )
        return await orchestrator.run(files)
