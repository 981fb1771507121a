"""Run lifecycle events.

Per run the orchestrator emits RUN_BEGUN, then one EVAL_BEGUN per Eval,
then a RESULT_STARTED / RESULT_SUBMITTED pair per execution unit, and
finally RUN_ENDED. Every Eval of a run has an ``eval_index``, its position
in expansion order, which result events carry to name their Eval;
display names need not be unique. Binary payloads are swapped for file
references once, by ``offload_event``, before subscribers see an event.
Other task values are made JSON-safe only when persisted or broadcast.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from evalrig.models.entities import ResultStatus, RunType
from evalrig.models.result import RenderedColumn, ScoreValue, TraceRecord
from evalrig.storage.serialization import make_serializable, offload_binary


class _EventModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class InitialEval(_EventModel):
    """An Eval about to execute, announced before any of its units."""

    eval_index: int
    name: str
    filepath: str
    variant_name: str | None = None
    variant_group: str | None = None
    expected_results: int = 0
    error: str | None = None


class InitialResult(_EventModel):
    """A unit that acquired its permit and is about to run its task."""

    eval_index: int
    eval_name: str
    filepath: str
    trial_index: int
    col_order: int
    input: Any = None
    expected: Any = None


class SubmittedResult(InitialResult):
    """A finished unit with its output, scores and traces."""

    output: Any = None
    status: ResultStatus
    duration: float = 0
    scores: list[ScoreValue] = Field(default_factory=list)
    traces: list[TraceRecord] = Field(default_factory=list)
    rendered_columns: list[RenderedColumn] = Field(default_factory=list)


class RunBegunEvent(_EventModel):
    type: Literal["RUN_BEGUN"] = "RUN_BEGUN"
    filepaths: list[str]
    run_type: RunType


class EvalBegunEvent(_EventModel):
    type: Literal["EVAL_BEGUN"] = "EVAL_BEGUN"
    initial_eval: InitialEval


class ResultStartedEvent(_EventModel):
    type: Literal["RESULT_STARTED"] = "RESULT_STARTED"
    initial_result: InitialResult


class ResultSubmittedEvent(_EventModel):
    type: Literal["RESULT_SUBMITTED"] = "RESULT_SUBMITTED"
    result: SubmittedResult


class RunEndedEvent(_EventModel):
    type: Literal["RUN_ENDED"] = "RUN_ENDED"
    cancelled: bool = False


Event = Annotated[
    Union[
        RunBegunEvent,
        EvalBegunEvent,
        ResultStartedEvent,
        ResultSubmittedEvent,
        RunEndedEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def serialize_event(event: Event) -> str:
    """JSON text of an event, with unencodable task values replaced."""
    return json.dumps(make_serializable(event.model_dump()), ensure_ascii=False)


def deserialize_event(text: str | bytes) -> Event:
    """Parse JSON text back into the matching event model."""
    return _event_adapter.validate_json(text)


def offload_event(event: Event, files_dir: Path | str) -> Event:
    """Copy of an event with every binary payload written to ``files_dir``.

    Inputs, expected values, outputs, score metadata, traces and
    rendered columns are all covered; other events pass through.
    """
    if isinstance(event, ResultStartedEvent):
        initial = event.initial_result
        return event.model_copy(
            update={
                "initial_result": initial.model_copy(
                    update={
                        "input": offload_binary(initial.input, files_dir),
                        "expected": offload_binary(initial.expected, files_dir),
                    }
                )
            }
        )
    if isinstance(event, ResultSubmittedEvent):
        result = event.result
        return event.model_copy(
            update={
                "result": result.model_copy(
                    update={
                        "input": offload_binary(result.input, files_dir),
                        "expected": offload_binary(result.expected, files_dir),
                        "output": offload_binary(result.output, files_dir),
                        "scores": [
                            s.model_copy(update={"metadata": offload_binary(s.metadata, files_dir)})
                            for s in result.scores
                        ],
                        "traces": [
                            t.model_copy(
                                update={
                                    "input": offload_binary(t.input, files_dir),
                                    "output": offload_binary(t.output, files_dir),
                                }
                            )
                            for t in result.traces
                        ],
                        "rendered_columns": [
                            c.model_copy(update={"value": offload_binary(c.value, files_dir)})
                            for c in result.rendered_columns
                        ],
                    }
                )
            }
        )
    return event
