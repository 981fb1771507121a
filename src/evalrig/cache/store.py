"""Pluggable key-value stores for cached model responses.

Values are JSON-compatible dicts. Concurrent writers to the same key
are allowed; the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Contract for cache backends."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None on a miss."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a value under key, replacing any previous value."""


class InMemoryCacheStore(CacheStore):
    """Process-local cache, lost when the process exits."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __len__(self) -> int:
        return len(self._entries)


class FileCacheStore(CacheStore):
    """Persist cache entries as JSON files, one per key.

    File layout:
        <cache_dir>/
            ab/
                ab12...ef.json    # Entry for key ab12...ef

    Writes are atomic (write to .tmp, then replace) to prevent partial files.
    """

    def __init__(self, cache_dir: Path | str) -> None:
        self.cache_dir = Path(cache_dir)

    def _entry_path(self, key: str) -> Path:
        return self.cache_dir / key[:2] / f"{key}.json"

    async def get(self, key: str) -> Any | None:
        entry_file = self._entry_path(key)
        if not entry_file.exists():
            return None
        try:
            return json.loads(entry_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt cache entry %s", entry_file)
            return None

    async def set(self, key: str, value: Any) -> None:
        entry_file = self._entry_path(key)
        entry_file.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(value, ensure_ascii=False)

        # Atomic write: unique tmp per writer, then replace
        tmp_file = entry_file.with_name(f"{entry_file.name}.{os.getpid()}.{id(value)}.tmp")
        tmp_file.write_text(content, encoding="utf-8")
        os.replace(tmp_file, entry_file)
