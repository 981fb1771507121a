"""Storage contract shared by every engine.

Entities are grouped into namespaces (``runs``, ``evals``, ``results``,
``scores``, ``traces``), each exposing ``create``, ``update`` (where an
entity is mutable) and ``get_many`` with structured filters. Engines
only implement four primitives: insert, update, select and the
per-result score average. JSON fields are converted with
``to_json_text`` semantics before they reach an engine, so odd values
never abort a write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

from pydantic import BaseModel

from evalrig.errors import StorageError
from evalrig.models.entities import (
    AverageScore,
    Eval,
    EvalStatus,
    Result,
    ResultStatus,
    Run,
    RunType,
    Score,
    Trace,
    utc_now_iso,
)
from evalrig.storage.serialization import make_serializable

OrderDirection = Literal["asc", "desc"]
Operator = Literal["eq", "in", "gt", "lt"]

JSON_COLUMNS = frozenset({"input", "output", "expected", "metadata", "rendered_columns"})


@dataclass(frozen=True)
class Condition:
    """One filter term of a select."""

    column: str
    op: Operator
    value: Any


@dataclass
class Query:
    """Engine-neutral select: AND of conditions, one ordering, optional limit."""

    conditions: list[Condition] = field(default_factory=list)
    order_by: str = "id"
    order_direction: OrderDirection = "asc"
    limit: int | None = None


def _in(column: str, values: Iterable[Any] | None) -> list[Condition]:
    if values is None:
        return []
    return [Condition(column, "in", list(values))]


def _eq(column: str, value: Any) -> list[Condition]:
    if value is None:
        return []
    return [Condition(column, "eq", value)]


def _created(
    created_at: str | None,
    created_after: str | None,
    created_before: str | None,
) -> list[Condition]:
    conditions = _eq("created_at", created_at)
    if created_after is not None:
        conditions.append(Condition("created_at", "gt", created_after))
    if created_before is not None:
        conditions.append(Condition("created_at", "lt", created_before))
    return conditions


class _Namespace:
    table: ClassVar[str]
    model: ClassVar[type[BaseModel]]
    columns: ClassVar[tuple[str, ...]]

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def _prepare(self, values: dict[str, Any]) -> dict[str, Any]:
        unknown = set(values) - set(self.columns)
        if unknown:
            raise StorageError(f"Unknown {self.table} columns: {sorted(unknown)}")
        return {
            key: make_serializable(value) if key in JSON_COLUMNS else value
            for key, value in values.items()
        }

    async def _create(self, values: dict[str, Any]) -> Any:
        row = await self._storage._insert(self.table, self._prepare(values))
        return self.model.model_validate(row)

    async def _update(self, entity_id: int, values: dict[str, Any]) -> Any:
        row = await self._storage._update(self.table, entity_id, self._prepare(values))
        return self.model.model_validate(row)

    async def _select(self, query: Query) -> list[Any]:
        rows = await self._storage._select(self.table, query)
        return [self.model.model_validate(row) for row in rows]


class RunsNamespace(_Namespace):
    table = "runs"
    model = Run
    columns = ("id", "run_type", "created_at")

    async def create(self, run_type: RunType) -> Run:
        return await self._create({"run_type": run_type, "created_at": utc_now_iso()})

    async def get_many(
        self,
        *,
        ids: Iterable[int] | None = None,
        run_type: RunType | None = None,
        created_at: str | None = None,
        created_after: str | None = None,
        created_before: str | None = None,
        order_by: str = "created_at",
        order_direction: OrderDirection = "desc",
        limit: int | None = None,
    ) -> list[Run]:
        conditions = [
            *_in("id", ids),
            *_eq("run_type", run_type),
            *_created(created_at, created_after, created_before),
        ]
        return await self._select(Query(conditions, order_by, order_direction, limit))


class EvalsNamespace(_Namespace):
    table = "evals"
    model = Eval
    columns = (
        "id", "run_id", "name", "filepath", "variant_name", "variant_group",
        "duration", "status", "created_at",
    )

    async def create(
        self,
        *,
        run_id: int,
        name: str,
        filepath: str,
        variant_name: str | None = None,
        variant_group: str | None = None,
        duration: float = 0,
        status: EvalStatus = "running",
    ) -> Eval:
        return await self._create({
            "run_id": run_id,
            "name": name,
            "filepath": filepath,
            "variant_name": variant_name,
            "variant_group": variant_group,
            "duration": duration,
            "status": status,
            "created_at": utc_now_iso(),
        })

    async def update(
        self,
        eval_id: int,
        *,
        status: EvalStatus | None = None,
        duration: float | None = None,
    ) -> Eval:
        values = {"status": status, "duration": duration}
        return await self._update(eval_id, {k: v for k, v in values.items() if v is not None})

    async def get_many(
        self,
        *,
        ids: Iterable[int] | None = None,
        run_ids: Iterable[int] | None = None,
        name: str | None = None,
        filepath: str | None = None,
        statuses: Iterable[EvalStatus] | None = None,
        created_at: str | None = None,
        created_after: str | None = None,
        created_before: str | None = None,
        order_by: str = "created_at",
        order_direction: OrderDirection = "desc",
        limit: int | None = None,
    ) -> list[Eval]:
        conditions = [
            *_in("id", ids),
            *_in("run_id", run_ids),
            *_eq("name", name),
            *_eq("filepath", filepath),
            *_in("status", statuses),
            *_created(created_at, created_after, created_before),
        ]
        return await self._select(Query(conditions, order_by, order_direction, limit))


class ResultsNamespace(_Namespace):
    table = "results"
    model = Result
    columns = (
        "id", "eval_id", "trial_index", "col_order", "duration", "input", "output",
        "expected", "status", "rendered_columns", "created_at",
    )

    async def create(
        self,
        *,
        eval_id: int,
        trial_index: int,
        col_order: int,
        input: Any = None,
        output: Any = None,
        expected: Any = None,
        duration: float = 0,
        status: ResultStatus = "running",
        rendered_columns: list[dict[str, Any]] | None = None,
    ) -> Result:
        return await self._create({
            "eval_id": eval_id,
            "trial_index": trial_index,
            "col_order": col_order,
            "input": input,
            "output": output,
            "expected": expected,
            "duration": duration,
            "status": status,
            "rendered_columns": rendered_columns or [],
            "created_at": utc_now_iso(),
        })

    async def update(self, result_id: int, **values: Any) -> Result:
        """Update any subset of a Result's mutable columns."""
        if {"id", "eval_id", "created_at"} & set(values):
            raise StorageError("Result id, eval_id and created_at are immutable")
        return await self._update(result_id, values)

    async def get_many(
        self,
        *,
        ids: Iterable[int] | None = None,
        eval_ids: Iterable[int] | None = None,
        statuses: Iterable[ResultStatus] | None = None,
        col_order: int | None = None,
        order_by: str = "col_order",
        order_direction: OrderDirection = "asc",
        limit: int | None = None,
    ) -> list[Result]:
        conditions = [
            *_in("id", ids),
            *_in("eval_id", eval_ids),
            *_in("status", statuses),
            *_eq("col_order", col_order),
        ]
        return await self._select(Query(conditions, order_by, order_direction, limit))

    async def get_average_scores(self, result_ids: Iterable[int]) -> list[AverageScore]:
        """Mean Score per Result; Results without Scores are omitted."""
        return await self._storage._average_scores(list(result_ids))


class ScoresNamespace(_Namespace):
    table = "scores"
    model = Score
    columns = ("id", "result_id", "name", "score", "description", "metadata", "created_at")

    async def create(
        self,
        *,
        result_id: int,
        name: str,
        score: float,
        description: str | None = None,
        metadata: Any = None,
    ) -> Score:
        return await self._create({
            "result_id": result_id,
            "name": name,
            "score": score,
            "description": description,
            "metadata": metadata,
            "created_at": utc_now_iso(),
        })

    async def get_many(
        self,
        *,
        ids: Iterable[int] | None = None,
        result_ids: Iterable[int] | None = None,
        name: str | None = None,
        order_by: str = "id",
        order_direction: OrderDirection = "asc",
        limit: int | None = None,
    ) -> list[Score]:
        conditions = [*_in("id", ids), *_in("result_id", result_ids), *_eq("name", name)]
        return await self._select(Query(conditions, order_by, order_direction, limit))


class TracesNamespace(_Namespace):
    table = "traces"
    model = Trace
    columns = (
        "id", "result_id", "input", "output", "start_time", "end_time",
        "input_tokens", "output_tokens", "total_tokens", "col_order",
    )

    async def create(
        self,
        *,
        result_id: int,
        start_time: float,
        end_time: float,
        col_order: int,
        input: Any = None,
        output: Any = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        total_tokens: int | None = None,
    ) -> Trace:
        return await self._create({
            "result_id": result_id,
            "input": input,
            "output": output,
            "start_time": start_time,
            "end_time": end_time,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": total_tokens,
            "col_order": col_order,
        })

    async def get_many(
        self,
        *,
        ids: Iterable[int] | None = None,
        result_ids: Iterable[int] | None = None,
        order_by: str = "col_order",
        order_direction: OrderDirection = "asc",
        limit: int | None = None,
    ) -> list[Trace]:
        conditions = [*_in("id", ids), *_in("result_id", result_ids)]
        return await self._select(Query(conditions, order_by, order_direction, limit))


TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    namespace.table: namespace.columns
    for namespace in (RunsNamespace, EvalsNamespace, ResultsNamespace, ScoresNamespace, TracesNamespace)
}


class Storage(ABC):
    """Persistence contract for runs and everything they own.

    Usable as an async context manager; ``close()`` releases the engine.
    """

    def __init__(self) -> None:
        self.runs = RunsNamespace(self)
        self.evals = EvalsNamespace(self)
        self.results = ResultsNamespace(self)
        self.scores = ScoresNamespace(self)
        self.traces = TracesNamespace(self)

    @abstractmethod
    async def _insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a row, assigning the next id. Returns the stored row."""

    @abstractmethod
    async def _update(self, table: str, entity_id: int, values: dict[str, Any]) -> dict[str, Any]:
        """Update a row by id. Raises StorageError if it does not exist."""

    @abstractmethod
    async def _select(self, table: str, query: Query) -> list[dict[str, Any]]:
        """Rows matching query, ordered with id as the tie-breaker."""

    @abstractmethod
    async def _average_scores(self, result_ids: list[int]) -> list[AverageScore]:
        """Per-result mean score for the given results."""

    async def close(self) -> None:
        """Release engine resources."""

    async def __aenter__(self) -> Storage:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def check_order_column(table: str, column: str) -> None:
    """Reject orderings on unknown columns before they reach an engine."""
    if column not in TABLE_COLUMNS[table]:
        raise StorageError(f"Cannot order {table} by unknown column '{column}'")
