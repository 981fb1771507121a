"""Storage subscriber: persists run events and tracks server state.

Within one unit the insertion order is fixed: the Result is created
(running) on RESULT_STARTED; on RESULT_SUBMITTED its Scores and Traces
are written first and the Result is finalized last. An Eval is
finalized once all of its expected Results have been submitted.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from evalrig.models.entities import RunType
from evalrig.reporter.events import (
    EvalBegunEvent,
    Event,
    InitialResult,
    ResultStartedEvent,
    ResultSubmittedEvent,
    RunBegunEvent,
    RunEndedEvent,
)
from evalrig.storage.base import Storage
from evalrig.storage.serialization import serialize_error

logger = logging.getLogger(__name__)


class RunningServerState(BaseModel):
    """Snapshot while a run is in progress."""

    type: Literal["running"] = "running"
    run_type: RunType
    filepaths: list[str] = Field(default_factory=list)
    run_id: int | None = None
    eval_names_running: list[str] = Field(default_factory=list)
    result_ids_running: list[int] = Field(default_factory=list)


class IdleServerState(BaseModel):
    """Snapshot between runs."""

    type: Literal["idle"] = "idle"


ServerState = RunningServerState | IdleServerState


@dataclass
class _EvalProgress:
    eval_id: int
    name: str
    expected_results: int
    started_at: float
    submitted: int = 0
    failed: bool = False
    finalized: bool = False
    result_ids: dict[int, int] = field(default_factory=dict)


class RunRecorder:
    """Pipeline subscriber writing events to storage.

    Evals are tracked by ``eval_index``, so two Evals sharing a display
    name never share Results.

    Args:
        storage: Target storage engine.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self.state: ServerState = IdleServerState()
        self._evals: dict[int, _EvalProgress] = {}

    async def __call__(self, event: Event) -> None:
        if isinstance(event, RunBegunEvent):
            await self._on_run_begun(event)
        elif isinstance(event, EvalBegunEvent):
            await self._on_eval_begun(event)
        elif isinstance(event, ResultStartedEvent):
            await self._on_result_started(event)
        elif isinstance(event, ResultSubmittedEvent):
            await self._on_result_submitted(event)
        elif isinstance(event, RunEndedEvent):
            await self._on_run_ended(event)

    @property
    def run_id(self) -> int | None:
        if isinstance(self.state, RunningServerState):
            return self.state.run_id
        return None

    def _progress(self, result: InitialResult) -> _EvalProgress:
        progress = self._evals.get(result.eval_index)
        if progress is None:
            raise KeyError(f"Result for unannounced eval #{result.eval_index} '{result.eval_name}'")
        return progress

    async def _on_run_begun(self, event: RunBegunEvent) -> None:
        self._evals = {}
        self.state = RunningServerState(run_type=event.run_type, filepaths=event.filepaths)
        run = await self.storage.runs.create(event.run_type)
        self.state.run_id = run.id
        logger.info("Run %s begun (%s, %d files)", run.id, event.run_type, len(event.filepaths))

    async def _on_eval_begun(self, event: EvalBegunEvent) -> None:
        initial = event.initial_eval
        record = await self.storage.evals.create(
            run_id=self.run_id,
            name=initial.name,
            filepath=initial.filepath,
            variant_name=initial.variant_name,
            variant_group=initial.variant_group,
        )
        progress = _EvalProgress(
            eval_id=record.id,
            name=initial.name,
            expected_results=initial.expected_results,
            started_at=time.perf_counter(),
            failed=initial.error is not None,
        )
        self._evals[initial.eval_index] = progress
        self.state.eval_names_running.append(initial.name)
        if progress.expected_results == 0:
            await self._finalize_eval(progress)

    async def _on_result_started(self, event: ResultStartedEvent) -> None:
        initial = event.initial_result
        progress = self._progress(initial)
        record = await self.storage.results.create(
            eval_id=progress.eval_id,
            trial_index=initial.trial_index,
            col_order=initial.col_order,
            input=initial.input,
            expected=initial.expected,
        )
        progress.result_ids[initial.col_order] = record.id
        self.state.result_ids_running.append(record.id)

    async def _on_result_submitted(self, event: ResultSubmittedEvent) -> None:
        submitted = event.result
        progress = self._progress(submitted)

        result_id = progress.result_ids.get(submitted.col_order)
        if result_id is None:
            record = await self.storage.results.create(
                eval_id=progress.eval_id,
                trial_index=submitted.trial_index,
                col_order=submitted.col_order,
                input=submitted.input,
                expected=submitted.expected,
            )
            result_id = record.id
            progress.result_ids[submitted.col_order] = result_id

        for score in submitted.scores:
            await self.storage.scores.create(
                result_id=result_id,
                name=score.name,
                score=score.score,
                description=score.description,
                metadata=score.metadata,
            )
        for position, trace in enumerate(submitted.traces):
            await self.storage.traces.create(
                result_id=result_id,
                input=trace.input,
                output=trace.output,
                start_time=trace.start,
                end_time=trace.end,
                input_tokens=trace.input_tokens,
                output_tokens=trace.output_tokens,
                total_tokens=trace.total_tokens,
                col_order=position,
            )

        await self.storage.results.update(
            result_id,
            output=submitted.output,
            duration=submitted.duration,
            status=submitted.status,
            rendered_columns=[c.model_dump() for c in submitted.rendered_columns],
        )
        if result_id in self.state.result_ids_running:
            self.state.result_ids_running.remove(result_id)

        progress.submitted += 1
        if submitted.status == "fail":
            progress.failed = True
        if progress.submitted >= progress.expected_results:
            await self._finalize_eval(progress)

    async def _finalize_eval(self, progress: _EvalProgress) -> None:
        if progress.finalized:
            return
        progress.finalized = True
        duration = (time.perf_counter() - progress.started_at) * 1000
        await self.storage.evals.update(
            progress.eval_id,
            status="fail" if progress.failed else "success",
            duration=duration,
        )
        if progress.name in self.state.eval_names_running:
            self.state.eval_names_running.remove(progress.name)

    async def _on_run_ended(self, event: RunEndedEvent) -> None:
        # Results never submitted (cancelled mid-flight) are closed out as failures
        if self.state.result_ids_running:
            reason = "Run cancelled" if event.cancelled else "Run ended before result was submitted"
            output = serialize_error(RuntimeError(reason))
            for result_id in list(self.state.result_ids_running):
                await self.storage.results.update(result_id, status="fail", output=output)
                logger.warning("Result %s finalized as fail: %s", result_id, reason)

            running_ids = set(self.state.result_ids_running)
            for progress in self._evals.values():
                if running_ids & set(progress.result_ids.values()):
                    progress.failed = True

        for progress in self._evals.values():
            if not progress.finalized:
                if progress.submitted < progress.expected_results:
                    progress.failed = True
                await self._finalize_eval(progress)

        logger.info("Run %s ended", self.run_id)
        self.state = IdleServerState()
