"""Scorer construction and invocation.

A scorer is any callable accepting ``input``, ``output`` and
``expected`` keyword arguments (plus ``ctx`` if it declares one). It may
be sync or async and may return:

- a number in [0, 1],
- a mapping with a ``score`` key and optional ``name``, ``description``
  and ``metadata``,
- a ScoreValue.

Anything else, including None and booleans, is a ScorerError.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Mapping
from typing import Any

from evalrig.errors import ScorerError
from evalrig.execution.context import UnitContext, call_with_context
from evalrig.models.result import ScoreValue


def scorer_name(scorer: Callable[..., Any]) -> str:
    """Display name of a scorer callable."""
    name = getattr(scorer, "scorer_name", None)
    if name:
        return name
    return getattr(scorer, "__name__", type(scorer).__name__)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def coerce_score(raw: Any, default_name: str, description: str | None = None) -> ScoreValue:
    """Normalize a scorer's return value into a ScoreValue.

    Raises:
        ScorerError: If no numeric score can be found.
    """
    if isinstance(raw, ScoreValue):
        return raw

    metadata = None
    name = default_name
    if isinstance(raw, Mapping):
        if "score" not in raw:
            raise ScorerError(default_name, "returned a mapping without a 'score' key")
        name = raw.get("name") or default_name
        description = raw.get("description", description)
        metadata = raw.get("metadata")
        value = raw["score"]
    else:
        value = raw

    if not _is_number(value):
        raise ScorerError(name, f"returned non-numeric score {value!r}")

    return ScoreValue(
        name=name,
        score=float(value),
        description=description,
        metadata=metadata,
    )


def create_scorer(
    name: str,
    scorer: Callable[..., Any],
    description: str | None = None,
) -> Callable[..., Any]:
    """Build a named scorer from a scoring function.

    Args:
        name: Score name stored with every result.
        scorer: Function of ``input``, ``output``, ``expected`` (and
            optionally ``ctx``) returning a number or a mapping with
            ``score`` and ``metadata``.
        description: Optional human-readable description.

    Returns:
        An async scorer usable in ``EvalDeclaration.scorers``.
    """

    async def run(*, input: Any, output: Any, expected: Any = None, ctx: UnitContext | None = None) -> ScoreValue:
        if ctx is None:
            ctx = UnitContext(eval_name="", trial_count=None, source="scorer")
        raw = await call_with_context(
            scorer, input=input, output=output, expected=expected, ctx=ctx
        )
        return coerce_score(raw, name, description)

    run.scorer_name = name  # type: ignore[attr-defined]
    run.__name__ = name
    return run


async def _run_one(
    scorer: Callable[..., Any],
    input: Any,
    output: Any,
    expected: Any,
    ctx: UnitContext,
) -> ScoreValue:
    name = scorer_name(scorer)
    try:
        raw = await call_with_context(
            scorer, input=input, output=output, expected=expected, ctx=ctx
        )
    except ScorerError:
        raise
    except Exception as exc:
        raise ScorerError(name, f"raised {type(exc).__name__}: {exc}") from exc
    return coerce_score(raw, name)


async def run_scorers(
    scorers: list[Callable[..., Any]],
    input: Any,
    output: Any,
    expected: Any,
    ctx: UnitContext,
) -> list[ScoreValue]:
    """Run every scorer concurrently against one task output.

    Returns:
        Scores in scorer declaration order (empty list for no scorers).

    Raises:
        ScorerError: For the first scorer (in declaration order) that
            raised or returned a non-numeric score.
    """
    if not scorers:
        return []

    scorer_ctx = ctx.for_scorer()
    outcomes = await asyncio.gather(
        *(_run_one(s, input, output, expected, scorer_ctx) for s in scorers),
        return_exceptions=True,
    )
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return list(outcomes)
