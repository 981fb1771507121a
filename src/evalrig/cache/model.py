"""Cached, traced wrapper around a model adapter.

Every call made through a CachedModel reports a trace to the unit
context. When the context has an active cache, identical calls are
served from the store: the cached response is returned with usage
zeroed so downstream accounting sees no new spend, and the time the
original call took is reported as saved.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from evalrig.adapters.base import (
    AdapterConfig,
    AdapterTurnResult,
    BaseAdapter,
    Message,
    TokenUsage,
)
from evalrig.cache.keys import CallType, generate_cache_key
from evalrig.execution.context import CacheHit
from evalrig.models.result import TraceRecord

if TYPE_CHECKING:
    from evalrig.execution.context import UnitContext


def _now_ms() -> float:
    return time.time() * 1000


def _prompt_for_trace(messages: list[Message]) -> list[dict[str, Any]]:
    return [{"role": m.role, "content": m.content} for m in messages]


class CachedModel(BaseAdapter):
    """BaseAdapter decorator adding tracing and caching for one unit."""

    def __init__(self, adapter: BaseAdapter, ctx: UnitContext) -> None:
        self.adapter = adapter
        self.ctx = ctx

    def model_id(self) -> str:
        return self.adapter.model_id()

    def _cache_key(
        self,
        call_type: CallType,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
        config: AdapterConfig | None,
    ) -> str:
        return generate_cache_key(
            model=self.adapter.model_id(),
            params=config,
            call_type=call_type,
            call_params={"messages": messages, "tools": tools},
            trial_count=self.ctx.trial_count,
        )

    def _report(self, key: str, hit: bool, saved_ms: float) -> None:
        self.ctx.report_cache_hit(
            CacheHit(
                key_hash=key,
                hit=hit,
                saved_duration_ms=saved_ms,
                source=self.ctx.source,
                eval_name=self.ctx.eval_name,
            )
        )

    async def send_turn(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        config: AdapterConfig | None = None,
    ) -> AdapterTurnResult:
        start = _now_ms()
        key: str | None = None

        if self.ctx.cache_active:
            key = self._cache_key("generate", messages, tools, config)
            cached = await self.ctx.cache_store.get(key)
            if cached is not None:
                result = AdapterTurnResult.from_dict(cached["response"])
                result.usage = TokenUsage()
                self._report(key, hit=True, saved_ms=cached.get("duration_ms", 0.0))
                self._trace(messages, result.content, start, result.usage)
                return result

        result = await self.adapter.send_turn(messages, tools, config)
        end = _now_ms()

        if key is not None:
            await self.ctx.cache_store.set(
                key, {"response": result.to_dict(), "duration_ms": end - start}
            )
            self._report(key, hit=False, saved_ms=0.0)

        self._trace(messages, result.content, start, result.usage, end=end)
        return result

    async def stream_turn(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        config: AdapterConfig | None = None,
    ) -> AsyncIterator[str]:
        start = _now_ms()
        key: str | None = None

        if self.ctx.cache_active:
            key = self._cache_key("stream", messages, tools, config)
            cached = await self.ctx.cache_store.get(key)
            if cached is not None:
                self._report(key, hit=True, saved_ms=cached.get("duration_ms", 0.0))
                chunks = list(cached["chunks"])
                for chunk in chunks:
                    yield chunk
                self._trace(messages, "".join(chunks), start, TokenUsage())
                return

        chunks: list[str] = []
        async for chunk in self.adapter.stream_turn(messages, tools, config):
            chunks.append(chunk)
            yield chunk
        end = _now_ms()

        if key is not None:
            await self.ctx.cache_store.set(
                key, {"chunks": chunks, "duration_ms": end - start}
            )
            self._report(key, hit=False, saved_ms=0.0)

        self._trace(messages, "".join(chunks), start, None, end=end)

    def _trace(
        self,
        messages: list[Message],
        output: Any,
        start: float,
        usage: TokenUsage | None,
        end: float | None = None,
    ) -> None:
        self.ctx.report_trace(
            TraceRecord(
                input=_prompt_for_trace(messages),
                output=output,
                start=start,
                end=end if end is not None else _now_ms(),
                input_tokens=usage.input_tokens if usage else None,
                output_tokens=usage.output_tokens if usage else None,
                total_tokens=usage.total_tokens if usage else None,
            )
        )
