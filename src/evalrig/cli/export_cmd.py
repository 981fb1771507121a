"""evalrig export -- write a stored run to a JSON file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from evalrig.errors import StorageError
from evalrig.models.config import find_project_root, load_run_config
from evalrig.storage import create_storage, export_run

console = Console(stderr=True)


def export(
    output: Path = typer.Argument(..., help="Destination JSON file"),
    run_id: Optional[int] = typer.Option(None, "--run-id", help="Run to export (default: latest)"),
    storage: Optional[str] = typer.Option(None, "--storage", help="SQLite path to read from"),
) -> None:
    """Export a run with its evals, results, scores and traces."""
    project_root = find_project_root()
    config = load_run_config(project_root)
    location = config.resolve_path(storage or config.storage, project_root)

    try:
        written = asyncio.run(_export_async(location, output, run_id))
    except StorageError as exc:
        console.print(f"[bold red]Export failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(f"Exported to [bold]{written}[/bold]")


async def _export_async(location: str, output: Path, run_id: int | None) -> Path:
    async with create_storage(location) as storage:
        return await export_run(storage, output, run_id)
