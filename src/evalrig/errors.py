"""Exception taxonomy for eval runs.

Per-unit failures (task, timeout, scorer) are caught by the orchestrator
and recorded on the affected Result. Dataset and load errors fail a whole
Eval or eval file. Storage errors are logged by the reporter pipeline.
"""

from __future__ import annotations


class EvalrigError(Exception):
    """Base class for all evalrig errors."""


class DatasetError(EvalrigError):
    """Raised when an eval's ``data`` producer fails.

    Attributes:
        eval_name: Name of the eval whose dataset could not be resolved.
    """

    def __init__(self, eval_name: str, cause: BaseException) -> None:
        self.eval_name = eval_name
        self.cause = cause
        super().__init__(
            f"Failed to resolve data for eval '{eval_name}': "
            f"{type(cause).__name__}: {cause}"
        )


class TaskTimeoutError(EvalrigError, TimeoutError):
    """Raised by a task executor when a unit exceeds its wall-clock budget."""

    def __init__(self, eval_name: str, timeout_ms: float) -> None:
        self.eval_name = eval_name
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Task in eval '{eval_name}' timed out after {timeout_ms:g}ms"
        )


class ScorerError(EvalrigError):
    """Raised when a scorer throws or returns a non-numeric score.

    A malformed scorer is a configuration bug, so the error fails the
    Result instead of being coerced into a number.
    """

    def __init__(self, scorer_name: str, message: str) -> None:
        self.scorer_name = scorer_name
        super().__init__(f"Scorer '{scorer_name}': {message}")


class EvalFileLoadError(EvalrigError):
    """Raised when an eval file fails at import time.

    Attributes:
        filepath: Path of the file that could not be loaded.
    """

    def __init__(self, filepath: str, cause: BaseException) -> None:
        self.filepath = filepath
        self.cause = cause
        super().__init__(
            f"Failed to load eval file '{filepath}': "
            f"{type(cause).__name__}: {cause}"
        )


class StorageError(EvalrigError):
    """Raised by storage engines for missing entities or failed writes."""
