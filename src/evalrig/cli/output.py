"""Rich terminal output for run summaries.

Provides the eval results table, the run headline and JSON output
for RunSummary display in terminal and CI.
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

from rich import box
from rich.console import Console
from rich.table import Table

from evalrig.evaluation.aggregation import format_score

if TYPE_CHECKING:
    from evalrig.evaluation.aggregation import RunSummary


# Status styling map: status -> (symbol, Rich markup style)
_STATUS_STYLES: dict[str, tuple[str, str]] = {
    "success": ("✓ success", "green"),
    "fail": ("✗ fail", "red"),
    "running": ("… running", "yellow"),
}


def render_eval_table(summary: RunSummary, console: Console) -> None:
    """Render one row per Eval: name, score and status.

    Evals without any score show '-' instead of a percentage.
    """
    if not summary.evals:
        console.print("[dim]No evals ran.[/dim]")
        return

    table = Table(box=box.SIMPLE_HEAVY, padding=(0, 1))
    table.add_column("Eval", style="bold")
    table.add_column("File", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Results", justify="right")
    table.add_column("Status")

    for eval_summary in summary.evals:
        symbol, style = _STATUS_STYLES.get(eval_summary.status, (eval_summary.status, "white"))
        table.add_row(
            eval_summary.name,
            eval_summary.filepath,
            format_score(eval_summary.average_score),
            str(eval_summary.result_count),
            f"[{style}]{symbol}[/{style}]",
        )
    console.print(table)


def render_summary(summary: RunSummary, console: Console) -> None:
    """Render the run headline: verdict, score vs threshold, failures."""
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")

    if summary.success:
        table.add_row("Verdict", "[bold green]✓ PASS[/bold green]")
    else:
        table.add_row("Verdict", "[bold red]✗ FAIL[/bold red]")

    table.add_row(
        "Score",
        f"{format_score(summary.average_score)} (threshold={summary.threshold:g}%)",
    )
    table.add_row(
        "Results",
        f"{summary.total_results - summary.failed_results}/{summary.total_results} succeeded",
    )
    if summary.cache_hits or summary.cache_misses:
        table.add_row(
            "Cache",
            f"{summary.cache_hits} hit, {summary.cache_misses} miss, "
            f"saved {summary.cache_saved_ms / 1000:.1f}s",
        )
    for filepath, error in summary.file_failures.items():
        table.add_row("Load error", f"[red]{filepath}[/red]: {error}")
    if summary.failure_reasons:
        table.add_row("Failed because", "[red]" + ", ".join(summary.failure_reasons) + "[/red]")
    if summary.cancelled:
        table.add_row("Cancelled", "[yellow]yes[/yellow]")

    console.print(table)


def output_json(summary: RunSummary) -> None:
    """Write the run summary as pure JSON to stdout.

    No Rich markup, no color, no extra text. Suitable for
    CI pipeline consumption and machine parsing.
    """
    data = summary.model_dump(mode="json")
    data["success"] = summary.success
    data["failure_reasons"] = summary.failure_reasons
    sys.stdout.write(json.dumps(data, indent=2))
    sys.stdout.write("\n")
