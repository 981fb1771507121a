"""Storage entities.

These models encode the persistence contract every storage engine
returns: Run -> Eval -> Result -> (Score, Trace). JSON fields
(input, output, expected, metadata, rendered_columns) are returned
decoded; engines store them as opaque JSON text.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel

RunType = Literal["full", "partial"]
EvalStatus = Literal["running", "success", "fail"]
ResultStatus = Literal["running", "success", "fail"]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (sortable)."""
    return datetime.now(timezone.utc).isoformat()


class Run(BaseModel):
    """One orchestrator invocation."""

    id: int
    run_type: RunType
    created_at: str


class Eval(BaseModel):
    """One (declared eval x resolved variant) within a run."""

    id: int
    run_id: int
    name: str
    filepath: str
    variant_name: str | None = None
    variant_group: str | None = None
    duration: float = 0
    status: EvalStatus = "running"
    created_at: str


class Result(BaseModel):
    """One (dataset row x trial) execution."""

    id: int
    eval_id: int
    trial_index: int
    col_order: int
    duration: float = 0
    input: Any = None
    output: Any = None
    expected: Any = None
    status: ResultStatus = "running"
    rendered_columns: list[dict[str, Any]] = []
    created_at: str


class Score(BaseModel):
    """A named score attached to a Result."""

    id: int
    result_id: int
    name: str
    score: float
    description: str | None = None
    metadata: Any = None
    created_at: str


class Trace(BaseModel):
    """A sub-call (e.g. model invocation) reported during a Result's task."""

    id: int
    result_id: int
    input: Any = None
    output: Any = None
    start_time: float
    end_time: float
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    col_order: int


class AverageScore(BaseModel):
    """Mean of one Result's scores."""

    result_id: int
    average: float
