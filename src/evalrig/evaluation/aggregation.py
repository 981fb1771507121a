"""Score aggregation and the run-level verdict.

The run average is computed in two steps: each Result's Scores are
averaged first, then those per-Result means are averaged. Results
without any Score are excluded rather than counted as zero.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from evalrig.models.entities import RunType

THRESHOLD_MISSED = "threshold missed"
EVALS_FAILED = "one or more evals failed"
FILES_FAILED = "eval files failed to load"
STORAGE_FAILED = "storage errors"


def average(scores: Iterable[float]) -> float | None:
    """Mean of scores, or None when there are none."""
    values = list(scores)
    if not values:
        return None
    return sum(values) / len(values)


def compute_run_average(per_result_scores: Iterable[Sequence[float]]) -> float | None:
    """Mean of per-Result means, skipping Results with no Scores.

    Args:
        per_result_scores: One sequence of score values per Result.

    Returns:
        Run average in [0, 1], or None if no Result has a Score.
    """
    means = [m for m in (average(scores) for scores in per_result_scores) if m is not None]
    return average(means)


def format_score(value: float | None) -> str:
    """Render an average as a whole percentage; absent scores render as '-'."""
    if value is None:
        return "-"
    return f"{round(value * 100)}%"


def threshold_missed(average_score: float | None, threshold: float) -> bool:
    """True when the run average, as a percentage, is below the threshold.

    A run without any Score has nothing to compare and never misses.
    """
    if average_score is None:
        return False
    return average_score * 100 < threshold


class EvalSummary(BaseModel):
    """Per-Eval line of the run summary."""

    name: str
    filepath: str
    status: str
    average_score: float | None = None
    result_count: int = 0
    duration: float = 0


class RunSummary(BaseModel):
    """Outcome of one orchestrator run."""

    run_id: int | None = None
    run_type: RunType
    average_score: float | None = None
    threshold: float
    threshold_missed: bool = False
    evals: list[EvalSummary] = Field(default_factory=list)
    failed_evals: list[str] = Field(default_factory=list)
    failed_results: int = 0
    total_results: int = 0
    file_failures: dict[str, str] = Field(default_factory=dict)
    storage_errors: list[str] = Field(default_factory=list)
    cache_hits: int = 0
    cache_misses: int = 0
    cache_saved_ms: float = 0.0
    cancelled: bool = False

    @property
    def failure_reasons(self) -> list[str]:
        reasons: list[str] = []
        if self.threshold_missed:
            reasons.append(THRESHOLD_MISSED)
        if self.failed_evals:
            reasons.append(EVALS_FAILED)
        if self.file_failures:
            reasons.append(FILES_FAILED)
        if self.storage_errors:
            reasons.append(STORAGE_FAILED)
        return reasons

    @property
    def success(self) -> bool:
        return not self.failure_reasons and not self.cancelled
