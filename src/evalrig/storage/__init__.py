"""Storage contract, engines and run export."""

from __future__ import annotations

from pathlib import Path

from evalrig.storage.base import Storage
from evalrig.storage.export import export_run
from evalrig.storage.memory import InMemoryStorage
from evalrig.storage.sqlite import SqliteStorage


def create_storage(location: Path | str | None) -> Storage:
    """Pick an engine for a configured location.

    ``None`` or ``":memory:"`` gives the ephemeral in-process engine;
    anything else is a SQLite database path.
    """
    if location is None or str(location) == ":memory:":
        return InMemoryStorage()
    return SqliteStorage(location)


__all__ = [
    "InMemoryStorage",
    "SqliteStorage",
    "Storage",
    "create_storage",
    "export_run",
]
