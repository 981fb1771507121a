"""evalrig execution - expansion, concurrency, unit context and executors."""

from evalrig.execution.context import CacheHit, UnitContext
from evalrig.execution.expander import ExecutionUnit, ExpandedEval, expand_eval
from evalrig.execution.semaphore import Semaphore

__all__ = [
    "CacheHit",
    "ExecutionUnit",
    "ExpandedEval",
    "Semaphore",
    "UnitContext",
    "expand_eval",
]
