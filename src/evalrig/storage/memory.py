"""Ephemeral in-process storage engine."""

from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any

from evalrig.errors import StorageError
from evalrig.models.entities import AverageScore
from evalrig.storage.base import TABLE_COLUMNS, Condition, Query, Storage, check_order_column


def _matches(row: dict[str, Any], condition: Condition) -> bool:
    value = row.get(condition.column)
    if condition.op == "eq":
        return value == condition.value
    if condition.op == "in":
        return value in condition.value
    if value is None:
        return False
    if condition.op == "gt":
        return value > condition.value
    return value < condition.value


class InMemoryStorage(Storage):
    """Dict-backed storage; everything is lost when the process exits."""

    def __init__(self) -> None:
        super().__init__()
        self._tables: dict[str, dict[int, dict[str, Any]]] = {
            table: {} for table in TABLE_COLUMNS
        }
        self._next_ids: dict[str, int] = defaultdict(lambda: 1)

    async def _insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        entity_id = self._next_ids[table]
        self._next_ids[table] += 1
        row = {column: None for column in TABLE_COLUMNS[table]}
        row.update(copy.deepcopy(values))
        row["id"] = entity_id
        self._tables[table][entity_id] = row
        return copy.deepcopy(row)

    async def _update(self, table: str, entity_id: int, values: dict[str, Any]) -> dict[str, Any]:
        row = self._tables[table].get(entity_id)
        if row is None:
            raise StorageError(f"No {table} row with id {entity_id}")
        row.update(copy.deepcopy(values))
        return copy.deepcopy(row)

    async def _select(self, table: str, query: Query) -> list[dict[str, Any]]:
        check_order_column(table, query.order_by)
        rows = [
            row
            for row in self._tables[table].values()
            if all(_matches(row, c) for c in query.conditions)
        ]
        reverse = query.order_direction == "desc"
        rows.sort(key=lambda r: r["id"], reverse=reverse)
        # None sorts before values, matching SQLite's NULL ordering
        rows.sort(
            key=lambda r: (r[query.order_by] is not None, r[query.order_by]),
            reverse=reverse,
        )
        if query.limit is not None:
            rows = rows[: query.limit]
        return [copy.deepcopy(row) for row in rows]

    async def _average_scores(self, result_ids: list[int]) -> list[AverageScore]:
        wanted = set(result_ids)
        grouped: dict[int, list[float]] = defaultdict(list)
        for score in self._tables["scores"].values():
            if score["result_id"] in wanted:
                grouped[score["result_id"]].append(score["score"])
        return [
            AverageScore(result_id=result_id, average=sum(values) / len(values))
            for result_id, values in sorted(grouped.items())
        ]
