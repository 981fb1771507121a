"""Evaluation package: scorers and run-level score aggregation."""

from __future__ import annotations

from evalrig.evaluation.aggregation import (
    RunSummary,
    compute_run_average,
    format_score,
    threshold_missed,
)
from evalrig.evaluation.scorer import create_scorer, run_scorers

__all__ = [
    "RunSummary",
    "compute_run_average",
    "create_scorer",
    "format_score",
    "run_scorers",
    "threshold_missed",
]
