"""evalrig - evaluation-run orchestrator for LLM tasks."""

__version__ = "0.1.0"

from evalrig.execution.context import UnitContext
from evalrig.execution.orchestrator import Orchestrator
from evalrig.models.config import RunConfig
from evalrig.models.declaration import DataRow, EvalDeclaration, Variant
from evalrig.evaluation.scorer import create_scorer

__all__ = [
    "DataRow",
    "EvalDeclaration",
    "Orchestrator",
    "RunConfig",
    "UnitContext",
    "Variant",
    "__version__",
    "create_scorer",
]
