"""Eval declaration models.

An EvalDeclaration is what an eval file exposes: a name, a dataset
(literal rows or a zero-argument producer), a task, scorers and the
optional variant set. The polymorphic ``data`` and ``variants`` shapes
are normalized here so the expander only ever sees canonical types.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataRow(BaseModel):
    """One dataset row.

    ``input`` and ``expected`` may hold arbitrary (non-serializable)
    objects; they reach the task and scorers unchanged.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    input: Any = None
    expected: Any = None
    only: bool = False
    skip: bool = False


class Variant(BaseModel):
    """An alternate task configuration producing a sibling Eval."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    name: str
    input: Any = None
    only: bool = False


class EvalDeclaration(BaseModel):
    """A user-declared evaluation.

    Attributes:
        name: Eval name; variant evals are named ``"<name> [<variant>]"``.
        data: List of rows (DataRow or dicts) or a zero-argument callable,
            sync or async, returning such a list.
        task: ``task(input)`` or ``task(input, variant)``; may be async,
            may return an async iterator of text chunks, and may declare
            a ``ctx`` parameter to receive the UnitContext.
        scorers: Callables ``scorer(input=, output=, expected=)`` returning
            a score dict, or scorers built with ``create_scorer``.
        columns: Optional callable returning ``[{label, value}]`` rendered
            next to each result.
        variants: List of Variant (or dicts) or a ``{name: input}`` mapping.
        parallel_limit: Max concurrently executing units across all
            variants of this eval.
        trial_count: Repetitions per row; overrides the config value.
        skip: When True the eval expands to nothing.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    name: str
    data: list[DataRow] | Callable[..., Any]
    task: Callable[..., Any]
    scorers: list[Callable[..., Any]] = Field(default_factory=list)
    columns: Callable[..., Any] | None = None
    variants: list[Variant] | None = None
    parallel_limit: int | None = Field(default=None, ge=1)
    trial_count: int | None = Field(default=None, ge=1)
    skip: bool = False

    @field_validator("variants", mode="before")
    @classmethod
    def _normalize_variants(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return [{"name": name, "input": variant_input} for name, variant_input in value.items()]
        return value

    @field_validator("scorers", mode="before")
    @classmethod
    def _normalize_scorers(cls, value: Any) -> Any:
        if value is None:
            return []
        from evalrig.evaluation.scorer import create_scorer

        normalized = []
        for scorer in value:
            if isinstance(scorer, Mapping):
                scorer = create_scorer(**scorer)
            normalized.append(scorer)
        return normalized


def normalize_rows(raw_rows: Any, eval_name: str) -> list[DataRow]:
    """Validate a resolved dataset into DataRow instances.

    Raises:
        TypeError: If the dataset is not a list/tuple of rows.
    """
    if not isinstance(raw_rows, (list, tuple)):
        raise TypeError(
            f"data for eval '{eval_name}' must resolve to a list of rows, "
            f"got {type(raw_rows).__name__}"
        )
    return [
        row if isinstance(row, DataRow) else DataRow.model_validate(row)
        for row in raw_rows
    ]
