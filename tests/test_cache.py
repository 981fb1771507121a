"""Tests for evalrig.cache - cache keys, stores and the cached model wrapper."""

from __future__ import annotations

import json
from typing import Any

import pytest

from evalrig.adapters.base import (
    AdapterConfig,
    AdapterTurnResult,
    BaseAdapter,
    Message,
    TokenUsage,
)
from evalrig.cache.keys import generate_cache_key
from evalrig.cache.store import FileCacheStore, InMemoryCacheStore
from evalrig.execution.context import CacheHit, UnitContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class CountingAdapter(BaseAdapter):
    """Adapter returning a fixed reply and counting real calls."""

    def __init__(self, content: str = "pong") -> None:
        self.content = content
        self.calls = 0

    async def send_turn(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        config: AdapterConfig | None = None,
    ) -> AdapterTurnResult:
        self.calls += 1
        return AdapterTurnResult(
            content=self.content,
            usage=TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        )

    def model_id(self) -> str:
        return "mock-model"


def _ctx(store, hits: list[CacheHit], **overrides) -> UnitContext:
    defaults: dict[str, Any] = {
        "eval_name": "ping",
        "trial_count": None,
        "cache_store": store,
        "on_cache_hit": hits.append,
    }
    defaults.update(overrides)
    return UnitContext(**defaults)


MESSAGES = [Message(role="user", content="ping")]


class TestCacheKeys:
    """Key derivation is deterministic and sensitive to every field."""

    def test_same_inputs_same_key(self):
        a = generate_cache_key("m", {"t": 0}, "generate", {"p": [1, 2]}, None)
        b = generate_cache_key("m", {"t": 0}, "generate", {"p": [1, 2]}, None)
        assert a == b
        assert len(a) == 64

    def test_dict_key_order_irrelevant(self):
        a = generate_cache_key("m", {"a": 1, "b": 2}, "generate", {}, None)
        b = generate_cache_key("m", {"b": 2, "a": 1}, "generate", {}, None)
        assert a == b

    @pytest.mark.parametrize(
        "changed",
        [
            {"model": "other"},
            {"params": {"t": 1}},
            {"call_type": "stream"},
            {"call_params": {"p": [2, 1]}},
            {"trial_count": 3},
        ],
    )
    def test_each_field_changes_key(self, changed):
        base = {
            "model": "m",
            "params": {"t": 0},
            "call_type": "generate",
            "call_params": {"p": [1, 2]},
            "trial_count": None,
        }
        assert generate_cache_key(**base) != generate_cache_key(**{**base, **changed})

    def test_dataclasses_are_encodable(self):
        key = generate_cache_key("m", AdapterConfig(model="m"), "generate", MESSAGES, 1)
        assert isinstance(key, str)


class TestInMemoryCacheStore:
    """Process-local store."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        store = InMemoryCacheStore()
        assert await store.get("k") is None
        await store.set("k", {"v": 1})
        assert await store.get("k") == {"v": 1}

    @pytest.mark.asyncio
    async def test_last_writer_wins(self):
        store = InMemoryCacheStore()
        await store.set("k", 1)
        await store.set("k", 2)
        assert await store.get("k") == 2
        assert len(store) == 1


class TestFileCacheStore:
    """One JSON file per key."""

    @pytest.mark.asyncio
    async def test_round_trip_persists_to_disk(self, tmp_path):
        store = FileCacheStore(tmp_path / "cache")
        await store.set("abcdef", {"response": "x"})

        reopened = FileCacheStore(tmp_path / "cache")
        assert await reopened.get("abcdef") == {"response": "x"}
        assert (tmp_path / "cache" / "ab" / "abcdef.json").exists()

    @pytest.mark.asyncio
    async def test_no_tmp_files_left(self, tmp_path):
        store = FileCacheStore(tmp_path)
        await store.set("abcdef", [1, 2, 3])
        assert not list(tmp_path.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, tmp_path):
        store = FileCacheStore(tmp_path)
        path = tmp_path / "ab" / "abcdef.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        assert await store.get("abcdef") is None


class TestCachedModel:
    """ctx.model() caches, traces and reports hits."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        hits: list[CacheHit] = []

        first = await _ctx(store, hits).model(adapter).send_turn(MESSAGES)
        second = await _ctx(store, hits).model(adapter).send_turn(MESSAGES)

        assert adapter.calls == 1
        assert first.content == second.content == "pong"
        assert [h.hit for h in hits] == [False, True]
        assert hits[0].key_hash == hits[1].key_hash
        assert hits[1].saved_duration_ms >= 0

    @pytest.mark.asyncio
    async def test_hit_zeroes_usage(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        await _ctx(store, []).model(adapter).send_turn(MESSAGES)
        cached = await _ctx(store, []).model(adapter).send_turn(MESSAGES)
        assert cached.usage == TokenUsage()

    @pytest.mark.asyncio
    async def test_saved_duration_is_stored_call_duration(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        hits: list[CacheHit] = []
        ctx = _ctx(store, hits)
        key = ctx.model(adapter)._cache_key("generate", MESSAGES, None, None)
        await store.set(key, {"response": AdapterTurnResult(content="old").to_dict(), "duration_ms": 1234.0})

        result = await ctx.model(adapter).send_turn(MESSAGES)
        assert result.content == "old"
        assert adapter.calls == 0
        assert hits[0].saved_duration_ms == 1234.0

    @pytest.mark.asyncio
    async def test_trial_count_separates_entries(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        await _ctx(store, [], trial_count=None).model(adapter).send_turn(MESSAGES)
        await _ctx(store, [], trial_count=3).model(adapter).send_turn(MESSAGES)
        assert adapter.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_cache_passes_through_silently(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        hits: list[CacheHit] = []
        for _ in range(2):
            await _ctx(store, hits, cache_enabled=False).model(adapter).send_turn(MESSAGES)
        assert adapter.calls == 2
        assert hits == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_every_call_reports_a_trace(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        ctx = _ctx(store, [])
        await ctx.model(adapter).send_turn(MESSAGES)
        await ctx.model(adapter).send_turn(MESSAGES)

        assert len(ctx.traces) == 2
        assert ctx.traces[0].output == "pong"
        assert ctx.traces[0].input == [{"role": "user", "content": "ping"}]
        assert ctx.traces[0].total_tokens == 15
        assert ctx.traces[1].total_tokens == 0

    @pytest.mark.asyncio
    async def test_stream_cached_and_replayed(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter(content="streamed text")
        hits: list[CacheHit] = []

        first = [c async for c in _ctx(store, hits).model(adapter).stream_turn(MESSAGES)]
        second = [c async for c in _ctx(store, hits).model(adapter).stream_turn(MESSAGES)]

        assert first == second == ["streamed text"]
        assert adapter.calls == 1
        assert [h.hit for h in hits] == [False, True]

    @pytest.mark.asyncio
    async def test_stream_and_generate_keys_differ(self):
        store = InMemoryCacheStore()
        adapter = CountingAdapter()
        await _ctx(store, []).model(adapter).send_turn(MESSAGES)
        [c async for c in _ctx(store, []).model(adapter).stream_turn(MESSAGES)]
        assert adapter.calls == 2

    @pytest.mark.asyncio
    async def test_scorer_context_labels_hits(self):
        store = InMemoryCacheStore()
        hits: list[CacheHit] = []
        ctx = _ctx(store, hits).for_scorer()
        await ctx.model(CountingAdapter()).send_turn(MESSAGES)
        assert hits[0].source == "scorer"

    @pytest.mark.asyncio
    async def test_file_store_entry_is_json(self, tmp_path):
        store = FileCacheStore(tmp_path)
        await _ctx(store, []).model(CountingAdapter()).send_turn(MESSAGES)
        [entry] = list(tmp_path.rglob("*.json"))
        data = json.loads(entry.read_text(encoding="utf-8"))
        assert data["response"]["content"] == "pong"
        assert data["duration_ms"] >= 0
        assert data["response"] == {
            "content": "pong",
            "usage": {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        }

    def test_default_model_id_is_class_name(self):
        assert BaseAdapter.model_id(CountingAdapter()) == "CountingAdapter"
