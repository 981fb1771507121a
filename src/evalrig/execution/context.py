"""Per-unit execution context.

A UnitContext is created for every execution unit and handed to the
task, scorers and columns callback when they declare a ``ctx``
parameter. It collects reported traces, carries the cache settings
that feed into cache keys, and forwards cache hit/miss reports to the
orchestrator's sink. ``ctx.model(adapter)`` returns a wrapped adapter
that does the trace and cache bookkeeping on the task's behalf.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from evalrig.models.result import TraceRecord

if TYPE_CHECKING:
    from evalrig.adapters.base import BaseAdapter
    from evalrig.cache.model import CachedModel
    from evalrig.cache.store import CacheStore

CallSource = Literal["task", "scorer"]


@dataclass(frozen=True)
class CacheHit:
    """A cache lookup outcome reported by a cached model call."""

    key_hash: str
    hit: bool
    saved_duration_ms: float
    source: CallSource = "task"
    eval_name: str = ""


class UnitContext:
    """Execution-scoped handle for one unit.

    Args:
        eval_name: Name of the Eval the unit belongs to.
        trial_count: Trial count of the unit's eval; part of cache keys.
        col_order: Position of the unit within its Eval.
        trial_index: Trial number of the unit, in ``[0, trial_count)``.
        cache_store: Backend for cached model calls, or None.
        cache_enabled: When False, wrapped models skip the cache.
        on_cache_hit: Sink receiving every CacheHit.
        source: Whether calls are made from the task or a scorer.
    """

    def __init__(
        self,
        *,
        eval_name: str,
        trial_count: int | None,
        col_order: int = 0,
        trial_index: int = 0,
        cache_store: CacheStore | None = None,
        cache_enabled: bool = True,
        on_cache_hit: Callable[[CacheHit], None] | None = None,
        source: CallSource = "task",
        traces: list[TraceRecord] | None = None,
    ) -> None:
        self.eval_name = eval_name
        self.trial_count = trial_count
        self.col_order = col_order
        self.trial_index = trial_index
        self.cache_store = cache_store
        self.cache_enabled = cache_enabled
        self.source = source
        self._on_cache_hit = on_cache_hit
        self.traces: list[TraceRecord] = traces if traces is not None else []

    @property
    def cache_active(self) -> bool:
        return self.cache_enabled and self.cache_store is not None

    def report_trace(self, trace: TraceRecord | dict[str, Any]) -> None:
        """Record a sub-call made while this unit executes."""
        if not isinstance(trace, TraceRecord):
            trace = TraceRecord.model_validate(trace)
        self.traces.append(trace)

    def report_cache_hit(self, hit: CacheHit) -> None:
        """Forward a cache lookup outcome to the configured sink."""
        if self._on_cache_hit is not None:
            self._on_cache_hit(hit)

    def for_scorer(self) -> UnitContext:
        """Context for scorer calls: same traces and cache, scorer-labelled."""
        return UnitContext(
            eval_name=self.eval_name,
            trial_count=self.trial_count,
            col_order=self.col_order,
            trial_index=self.trial_index,
            cache_store=self.cache_store,
            cache_enabled=self.cache_enabled,
            on_cache_hit=self._on_cache_hit,
            source="scorer",
            traces=self.traces,
        )

    def model(self, adapter: BaseAdapter) -> CachedModel:
        """Wrap an adapter so its calls are traced and cached for this unit."""
        from evalrig.cache.model import CachedModel

        return CachedModel(adapter, self)


def accepts_context(fn: Callable[..., Any]) -> bool:
    """True if ``fn`` declares a ``ctx`` parameter."""
    try:
        parameters = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    return "ctx" in parameters


async def call_with_context(
    fn: Callable[..., Any],
    *args: Any,
    ctx: UnitContext,
    **kwargs: Any,
) -> Any:
    """Call ``fn`` (sync or async), injecting ``ctx`` when it asks for it."""
    if accepts_context(fn):
        kwargs["ctx"] = ctx
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
