"""Run orchestrator: load, expand, execute, persist, and judge one run.

Lifecycle of a run:

    INIT -> EXPANDING -> EXECUTING -> FINALIZING -> DONE

The first run of an Orchestrator is a ``full`` run; every later run
(watch-mode reruns of changed files) is ``partial``. Each unit goes
through: permit -> RESULT_STARTED -> task -> scorers -> columns ->
RESULT_SUBMITTED -> persisted -> permit released. Unit failures are
recorded on their Result and never stop sibling units.

Runs of one Orchestrator never overlap: starting a run while another is
in flight cancels the older one and waits until it has finalized.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from evalrig.cache.store import CacheStore, InMemoryCacheStore
from evalrig.errors import EvalFileLoadError, StorageError
from evalrig.evaluation.aggregation import (
    EvalSummary,
    RunSummary,
    average,
    compute_run_average,
    threshold_missed,
)
from evalrig.evaluation.scorer import run_scorers
from evalrig.execution.context import CacheHit, UnitContext, call_with_context
from evalrig.execution.executor import AsyncioTaskExecutor, TaskExecutor, invoke_task
from evalrig.execution.expander import ExecutionUnit, ExpandedEval, expand_eval
from evalrig.execution.loader import load_eval_file
from evalrig.execution.semaphore import Semaphore
from evalrig.models.config import RunConfig
from evalrig.models.declaration import EvalDeclaration
from evalrig.models.entities import RunType
from evalrig.models.result import RenderedColumn, ScoreValue
from evalrig.reporter.broadcast import Broadcaster
from evalrig.reporter.events import (
    EvalBegunEvent,
    Event,
    InitialEval,
    InitialResult,
    ResultStartedEvent,
    ResultSubmittedEvent,
    RunBegunEvent,
    RunEndedEvent,
    SubmittedResult,
    offload_event,
)
from evalrig.reporter.pipeline import EventPipeline
from evalrig.reporter.recorder import RunRecorder, ServerState
from evalrig.storage.base import Storage
from evalrig.storage.memory import InMemoryStorage
from evalrig.storage.serialization import serialize_error

logger = logging.getLogger(__name__)


class RunPhase(str, enum.Enum):
    INIT = "init"
    EXPANDING = "expanding"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class CacheStats:
    """Cache hit sink for one run; logs every lookup."""

    hits: int = 0
    misses: int = 0
    saved_ms: float = 0.0

    def record(self, hit: CacheHit) -> None:
        label = "Scorer" if hit.source == "scorer" else "Task"
        if hit.hit:
            self.hits += 1
            self.saved_ms += hit.saved_duration_ms
            logger.debug(
                "[CACHE] %s cache HIT %s saved %dms",
                label, hit.key_hash[:8], round(hit.saved_duration_ms),
            )
        else:
            self.misses += 1
            logger.debug("[CACHE] %s cache MISS %s", label, hit.key_hash[:8])


@dataclass
class _ActiveRun:
    pipeline: EventPipeline
    files_dir: Path
    stats: CacheStats = field(default_factory=CacheStats)
    pending: list[asyncio.Future[None]] = field(default_factory=list)

    async def send(self, event: Event) -> None:
        """Send an event and wait until it has been persisted."""
        try:
            await self.pipeline.send(offload_event(event, self.files_dir))
        except StorageError:
            # Already logged and recorded on pipeline.errors
            pass

    def send_nowait(self, event: Event) -> None:
        self.pending.append(self.pipeline.send(offload_event(event, self.files_dir)))

    async def drain(self) -> None:
        if self.pending:
            await asyncio.gather(*self.pending, return_exceptions=True)
            self.pending.clear()
        await self.pipeline.wait_for_completion()


class Orchestrator:
    """Drives eval runs against one storage and cache.

    Args:
        config: Run configuration; defaults to ``RunConfig()``.
        storage: Storage engine; an InMemoryStorage when None.
        executor: Task executor; an AsyncioTaskExecutor built from the
            config's ``max_concurrency`` and ``test_timeout_ms`` when None.
        cache_store: Cache for model calls made through ``ctx.model()``.
            A process-local store is used when None and caching is enabled.
        broadcaster: Optional live event broadcaster.
        files_dir: Directory for offloaded binary payloads; the config's
            ``files_dir`` when None.
    """

    def __init__(
        self,
        config: RunConfig | None = None,
        storage: Storage | None = None,
        executor: TaskExecutor | None = None,
        cache_store: CacheStore | None = None,
        broadcaster: Broadcaster | None = None,
        files_dir: Path | str | None = None,
    ) -> None:
        self.config = config or RunConfig()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.executor = executor or AsyncioTaskExecutor(
            max_concurrency=self.config.max_concurrency,
            timeout_ms=self.config.test_timeout_ms,
        )
        if cache_store is None and self.config.cache_enabled:
            cache_store = InMemoryCacheStore()
        self.cache_store = cache_store
        self.broadcaster = broadcaster
        self.files_dir = Path(files_dir if files_dir is not None else self.config.files_dir)
        self.recorder = RunRecorder(self.storage)
        self.phase = RunPhase.INIT
        self._runs_started = 0
        self._run_lock = asyncio.Lock()
        self._running = False
        self._cancel_requested = False
        self._units_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ServerState:
        """Live snapshot of the current run (idle between runs)."""
        return self.recorder.state

    def _next_run_type(self) -> RunType:
        return "full" if self._runs_started == 0 else "partial"

    async def run(self, files: Iterable[Path | str]) -> RunSummary:
        """Load eval files and run every eval they declare."""
        return await self._run_files(files)

    async def rerun(self, files: Iterable[Path | str]) -> RunSummary:
        """Rerun a subset of files, e.g. after a watch-mode change.

        Produces a ``partial`` run unless nothing has run yet. A run
        still in flight is cancelled and finalized first.
        """
        return await self._run_files(files)

    async def run_declarations(
        self,
        declarations: Mapping[str, Sequence[EvalDeclaration]],
        run_type: RunType | None = None,
    ) -> RunSummary:
        """Run in-memory declarations keyed by the filepath they belong to."""
        return await self._execute(
            {filepath: list(decls) for filepath, decls in declarations.items()},
            run_type,
            file_failures={},
        )

    def cancel(self) -> bool:
        """Cancel the in-flight run.

        Units already running are recorded as failed; units not yet
        started never run. The run then finalizes normally with
        ``cancelled=True`` on its summary. Use ``stop()`` to also wait
        for that.

        Returns:
            True if there was something to cancel.
        """
        if not self._running:
            return False
        self._cancel_requested = True
        if self._units_task is not None and not self._units_task.done():
            self._units_task.cancel()
        return True

    async def stop(self) -> bool:
        """Cancel the in-flight run and wait until it has finalized."""
        cancelled = self.cancel()
        async with self._run_lock:
            pass
        return cancelled

    async def _run_files(self, files: Iterable[Path | str]) -> RunSummary:
        declarations: dict[str, list[EvalDeclaration]] = {}
        file_failures: dict[str, str] = {}
        for path in files:
            filepath = str(path)
            try:
                declarations[filepath] = load_eval_file(path)
            except EvalFileLoadError as exc:
                file_failures[filepath] = str(exc)
        return await self._execute(
            declarations,
            None,
            file_failures,
            filepaths=[*declarations, *file_failures],
        )

    async def _execute(
        self,
        declarations: dict[str, list[EvalDeclaration]],
        run_type: RunType | None,
        file_failures: dict[str, str],
        filepaths: list[str] | None = None,
    ) -> RunSummary:
        if self.cancel():
            logger.info("Superseding the in-flight run")
        async with self._run_lock:
            self._cancel_requested = False
            self._running = True
            try:
                return await self._execute_locked(
                    declarations,
                    run_type or self._next_run_type(),
                    file_failures,
                    filepaths,
                )
            finally:
                self._running = False

    async def _execute_locked(
        self,
        declarations: dict[str, list[EvalDeclaration]],
        run_type: RunType,
        file_failures: dict[str, str],
        filepaths: list[str] | None,
    ) -> RunSummary:
        self._runs_started += 1
        subscribers = [self.recorder]
        if self.broadcaster is not None:
            subscribers.append(self.broadcaster)
        active = _ActiveRun(EventPipeline(subscribers), self.files_dir)

        self.phase = RunPhase.EXPANDING
        await active.send(
            RunBegunEvent(filepaths=filepaths or list(declarations), run_type=run_type)
        )
        run_id = self.recorder.run_id

        expanded_evals: list[ExpandedEval] = []
        for filepath, decls in declarations.items():
            for declaration in decls:
                expanded_evals.extend(
                    await expand_eval(declaration, filepath, self.config.trial_count)
                )
        for eval_index, expanded in enumerate(expanded_evals):
            await active.send(
                EvalBegunEvent(
                    initial_eval=InitialEval(
                        eval_index=eval_index,
                        name=expanded.name,
                        filepath=expanded.filepath,
                        variant_name=expanded.variant_name,
                        variant_group=expanded.variant_group,
                        expected_results=len(expanded.units),
                        error=str(expanded.error) if expanded.error else None,
                    )
                )
            )

        self.phase = RunPhase.EXECUTING
        logger.info(
            "Executing %d units across %d evals",
            sum(len(e.units) for e in expanded_evals), len(expanded_evals),
        )
        cancelled = self._cancel_requested
        if cancelled:
            logger.warning("Run %s cancelled before executing", run_id)
        else:
            self._units_task = asyncio.create_task(self._run_units(active, expanded_evals))
            try:
                await self._units_task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                cancelled = True
                logger.warning("Run %s cancelled", run_id)
            finally:
                self._units_task = None

        self.phase = RunPhase.FINALIZING
        await active.drain()
        await active.send(RunEndedEvent(cancelled=cancelled))
        await active.pipeline.close()

        summary = await self._build_summary(
            run_id, run_type, active, file_failures, cancelled
        )
        self.phase = RunPhase.DONE
        return summary

    def _cache_trial_count(self, declaration: EvalDeclaration) -> int | None:
        if declaration.trial_count is not None:
            return declaration.trial_count
        return self.config.trial_count

    async def _run_units(self, active: _ActiveRun, expanded_evals: list[ExpandedEval]) -> None:
        # One limiter per declaration, shared by all of its variants
        limiters: dict[int, Semaphore] = {}
        async with asyncio.TaskGroup() as tg:
            for eval_index, expanded in enumerate(expanded_evals):
                declaration = expanded.declaration
                limiter = None
                if declaration.parallel_limit is not None:
                    limiter = limiters.setdefault(
                        id(declaration), Semaphore(declaration.parallel_limit)
                    )
                for unit in expanded.units:
                    tg.create_task(
                        self._run_unit(active, eval_index, unit, declaration, limiter)
                    )

    async def _run_unit(
        self,
        active: _ActiveRun,
        eval_index: int,
        unit: ExecutionUnit,
        declaration: EvalDeclaration,
        limiter: Semaphore | None,
    ) -> None:
        if limiter is not None:
            await limiter.acquire()
        try:
            await active.send(
                ResultStartedEvent(
                    initial_result=InitialResult(
                        eval_index=eval_index,
                        eval_name=unit.eval_name,
                        filepath=unit.filepath,
                        trial_index=unit.trial_index,
                        col_order=unit.col_order,
                        input=unit.input,
                        expected=unit.expected,
                    )
                )
            )
            start = time.perf_counter()
            try:
                submitted = await self._execute_unit(active, eval_index, unit, declaration)
            except asyncio.CancelledError as exc:
                duration = (time.perf_counter() - start) * 1000
                active.send_nowait(
                    ResultSubmittedEvent(
                        result=self._failed_result(eval_index, unit, exc, duration)
                    )
                )
                raise
            await active.send(ResultSubmittedEvent(result=submitted))
        finally:
            if limiter is not None:
                limiter.release()

    async def _execute_unit(
        self,
        active: _ActiveRun,
        eval_index: int,
        unit: ExecutionUnit,
        declaration: EvalDeclaration,
    ) -> SubmittedResult:
        ctx = UnitContext(
            eval_name=unit.eval_name,
            trial_count=self._cache_trial_count(declaration),
            col_order=unit.col_order,
            trial_index=unit.trial_index,
            cache_store=self.cache_store,
            cache_enabled=self.config.cache_enabled,
            on_cache_hit=active.stats.record,
        )
        start = time.perf_counter()
        try:
            outcome = await self.executor.execute_unit(
                unit, lambda: invoke_task(declaration.task, unit, ctx)
            )
            scores = await run_scorers(
                declaration.scorers, unit.input, outcome.output, unit.expected, ctx
            )
            columns = await self._render_columns(declaration, unit, outcome.output, scores, ctx)
        except Exception as exc:
            logger.warning(
                "Eval '%s' unit %d failed: %s: %s",
                unit.eval_name, unit.col_order, type(exc).__name__, exc,
            )
            duration = (time.perf_counter() - start) * 1000
            result = self._failed_result(eval_index, unit, exc, duration)
            result.traces = list(ctx.traces)
            return result

        return SubmittedResult(
            eval_index=eval_index,
            eval_name=unit.eval_name,
            filepath=unit.filepath,
            trial_index=unit.trial_index,
            col_order=unit.col_order,
            input=unit.input,
            expected=unit.expected,
            output=outcome.output,
            status="success",
            duration=outcome.duration,
            scores=scores,
            traces=list(ctx.traces),
            rendered_columns=columns,
        )

    async def _render_columns(
        self,
        declaration: EvalDeclaration,
        unit: ExecutionUnit,
        output: Any,
        scores: list[ScoreValue],
        ctx: UnitContext,
    ) -> list[RenderedColumn]:
        if declaration.columns is None:
            return []
        raw = await call_with_context(
            declaration.columns,
            input=unit.input,
            output=output,
            expected=unit.expected,
            scores=scores,
            ctx=ctx,
        )
        return [RenderedColumn.model_validate(column) for column in raw or []]

    @staticmethod
    def _failed_result(
        eval_index: int, unit: ExecutionUnit, exc: BaseException, duration: float
    ) -> SubmittedResult:
        return SubmittedResult(
            eval_index=eval_index,
            eval_name=unit.eval_name,
            filepath=unit.filepath,
            trial_index=unit.trial_index,
            col_order=unit.col_order,
            input=unit.input,
            expected=unit.expected,
            output=serialize_error(exc),
            status="fail",
            duration=duration,
        )

    async def _build_summary(
        self,
        run_id: int | None,
        run_type: RunType,
        active: _ActiveRun,
        file_failures: dict[str, str],
        cancelled: bool,
    ) -> RunSummary:
        summary = RunSummary(
            run_id=run_id,
            run_type=run_type,
            threshold=self.config.score_threshold,
            file_failures=file_failures,
            cache_hits=active.stats.hits,
            cache_misses=active.stats.misses,
            cache_saved_ms=active.stats.saved_ms,
            cancelled=cancelled,
        )
        if run_id is None:
            summary.storage_errors = list(active.pipeline.errors)
            return summary

        per_result_scores: list[list[float]] = []
        try:
            evals = await self.storage.evals.get_many(
                run_ids=[run_id], order_by="id", order_direction="asc"
            )
            for eval_ in evals:
                results = await self.storage.results.get_many(eval_ids=[eval_.id])
                result_ids = [r.id for r in results]
                scores_by_result: dict[int, list[float]] = defaultdict(list)
                for score in await self.storage.scores.get_many(result_ids=result_ids):
                    scores_by_result[score.result_id].append(score.score)
                per_result_scores.extend(scores_by_result[rid] for rid in result_ids)

                averages = await self.storage.results.get_average_scores(result_ids)
                summary.evals.append(
                    EvalSummary(
                        name=eval_.name,
                        filepath=eval_.filepath,
                        status=eval_.status,
                        average_score=average(a.average for a in averages),
                        result_count=len(results),
                        duration=eval_.duration,
                    )
                )
                summary.total_results += len(results)
                summary.failed_results += sum(1 for r in results if r.status == "fail")
                if eval_.status == "fail":
                    summary.failed_evals.append(eval_.name)
        except StorageError as exc:
            logger.exception("Could not read back run %s", run_id)
            active.pipeline.errors.append(str(exc))

        summary.average_score = compute_run_average(per_result_scores)
        summary.threshold_missed = threshold_missed(summary.average_score, summary.threshold)
        summary.storage_errors = list(active.pipeline.errors)
        logger.info(
            "Run %s finished: success=%s reasons=%s",
            run_id, summary.success, summary.failure_reasons,
        )
        return summary
