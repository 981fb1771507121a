"""Durable SQLite storage engine.

JSON fields are stored as TEXT and decoded on read. Every event the
reporter persists is committed before the next one is handled, so
partial progress survives an interrupted process.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from evalrig.errors import StorageError
from evalrig.models.entities import AverageScore
from evalrig.storage.base import (
    JSON_COLUMNS,
    TABLE_COLUMNS,
    Query,
    Storage,
    check_order_column,
)

SCHEMA_VERSION = 1

TABLES_SQL = """\
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_type TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    filepath TEXT NOT NULL,
    variant_name TEXT,
    variant_group TEXT,
    duration REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'running',
    created_at TEXT NOT NULL,
    FOREIGN KEY (run_id) REFERENCES runs(id)
);

CREATE TABLE IF NOT EXISTS results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    eval_id INTEGER NOT NULL,
    trial_index INTEGER NOT NULL DEFAULT 0,
    col_order INTEGER NOT NULL,
    duration REAL NOT NULL DEFAULT 0,
    input TEXT,
    output TEXT,
    expected TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    rendered_columns TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    FOREIGN KEY (eval_id) REFERENCES evals(id)
);

CREATE TABLE IF NOT EXISTS scores (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    result_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    score REAL NOT NULL,
    description TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (result_id) REFERENCES results(id)
);

CREATE TABLE IF NOT EXISTS traces (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    result_id INTEGER NOT NULL,
    input TEXT,
    output TEXT,
    start_time REAL NOT NULL,
    end_time REAL NOT NULL,
    input_tokens INTEGER,
    output_tokens INTEGER,
    total_tokens INTEGER,
    col_order INTEGER NOT NULL,
    FOREIGN KEY (result_id) REFERENCES results(id)
);

CREATE INDEX IF NOT EXISTS idx_evals_run_id ON evals(run_id);
CREATE INDEX IF NOT EXISTS idx_results_eval_id ON results(eval_id);
CREATE INDEX IF NOT EXISTS idx_scores_result_id ON scores(result_id);
CREATE INDEX IF NOT EXISTS idx_traces_result_id ON traces(result_id);
"""

_OPERATORS = {"eq": "=", "gt": ">", "lt": "<"}


def init_db(location: str) -> sqlite3.Connection:
    """Open (creating if needed) the database and return a connection."""
    if location != ":memory:":
        Path(location).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(location)
    if location != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(TABLES_SQL)

    cur = conn.execute("SELECT version FROM schema_version")
    if cur.fetchone() is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    conn.commit()
    return conn


def _encode(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: json.dumps(value, ensure_ascii=False) if key in JSON_COLUMNS else value
        for key, value in values.items()
    }


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    decoded = dict(row)
    for key in JSON_COLUMNS & decoded.keys():
        if decoded[key] is not None:
            decoded[key] = json.loads(decoded[key])
    return decoded


class SqliteStorage(Storage):
    """Storage persisted in a SQLite database file (or ``:memory:``)."""

    def __init__(self, location: Path | str = ":memory:") -> None:
        super().__init__()
        self.location = str(location)
        try:
            self.conn = init_db(self.location)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.location}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row

    def _fetch(self, table: str, entity_id: int) -> dict[str, Any]:
        try:
            row = self.conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Read of {table} {entity_id} failed: {exc}") from exc
        if row is None:
            raise StorageError(f"No {table} row with id {entity_id}")
        return _decode(row)

    async def _insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        encoded = _encode(values)
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        try:
            cur = self.conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(encoded.values()),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StorageError(f"Insert into {table} failed: {exc}") from exc
        return self._fetch(table, cur.lastrowid)

    async def _update(self, table: str, entity_id: int, values: dict[str, Any]) -> dict[str, Any]:
        if not values:
            return self._fetch(table, entity_id)
        encoded = _encode(values)
        assignments = ", ".join(f"{column} = ?" for column in encoded)
        try:
            cur = self.conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*encoded.values(), entity_id),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StorageError(f"Update of {table} {entity_id} failed: {exc}") from exc
        if cur.rowcount == 0:
            raise StorageError(f"No {table} row with id {entity_id}")
        return self._fetch(table, entity_id)

    async def _select(self, table: str, query: Query) -> list[dict[str, Any]]:
        check_order_column(table, query.order_by)
        clauses: list[str] = []
        params: list[Any] = []
        for condition in query.conditions:
            if condition.column not in TABLE_COLUMNS[table]:
                raise StorageError(f"Cannot filter {table} by unknown column '{condition.column}'")
            if condition.op == "in":
                if not condition.value:
                    return []
                clauses.append(
                    f"{condition.column} IN ({', '.join('?' for _ in condition.value)})"
                )
                params.extend(condition.value)
            else:
                clauses.append(f"{condition.column} {_OPERATORS[condition.op]} ?")
                params.append(condition.value)

        direction = "DESC" if query.order_direction == "desc" else "ASC"
        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {query.order_by} {direction}, id {direction}"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)

        try:
            rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Query of {table} failed: {exc}") from exc
        return [_decode(row) for row in rows]

    async def _average_scores(self, result_ids: list[int]) -> list[AverageScore]:
        if not result_ids:
            return []
        placeholders = ", ".join("?" for _ in result_ids)
        try:
            rows = self.conn.execute(
                f"SELECT result_id, AVG(score) AS average FROM scores "
                f"WHERE result_id IN ({placeholders}) GROUP BY result_id ORDER BY result_id",
                result_ids,
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Average score query failed: {exc}") from exc
        return [AverageScore(result_id=r["result_id"], average=r["average"]) for r in rows]

    async def close(self) -> None:
        self.conn.close()
