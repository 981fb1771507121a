"""In-flight result data models.

These are the values produced while a unit executes (scores, traces,
rendered columns) before they are persisted as storage entities.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class ScoreValue(BaseModel):
    """Output of a single scorer for one result."""

    name: str
    score: float
    description: str | None = None
    metadata: Any = None


class TraceRecord(BaseModel):
    """A sub-call reported from inside a task or scorer.

    ``start`` and ``end`` are wall-clock milliseconds since the epoch.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    input: Any = None
    output: Any = None
    start: float
    end: float
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class RenderedColumn(BaseModel):
    """A custom column shown next to a result."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    label: str
    value: Any = None
