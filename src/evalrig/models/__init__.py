"""evalrig data models - re-exports all public model classes."""

from evalrig.models.config import RunConfig
from evalrig.models.declaration import DataRow, EvalDeclaration, Variant
from evalrig.models.entities import Eval, Result, Run, Score, Trace
from evalrig.models.result import RenderedColumn, ScoreValue, TraceRecord

__all__ = [
    "DataRow",
    "Eval",
    "EvalDeclaration",
    "RenderedColumn",
    "Result",
    "Run",
    "RunConfig",
    "Score",
    "ScoreValue",
    "Trace",
    "TraceRecord",
    "Variant",
]
