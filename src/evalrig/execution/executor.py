"""Task executors: run one unit's task under a concurrency cap and timeout.

The orchestrator hands an executor a zero-argument coroutine factory for
each unit. The executor decides when it runs (global concurrency) and
for how long (wall-clock timeout), and reports the output and duration.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from evalrig.errors import TaskTimeoutError
from evalrig.execution.context import UnitContext, call_with_context
from evalrig.execution.expander import ExecutionUnit


@dataclass
class UnitOutcome:
    """Output of a successful task invocation."""

    output: Any
    duration: float


class TaskExecutor(Protocol):
    """Anything that can execute a unit's task and time it."""

    async def execute_unit(
        self,
        unit: ExecutionUnit,
        run: Callable[[], Awaitable[Any]],
    ) -> UnitOutcome: ...


async def collect_stream(stream: AsyncIterator[Any]) -> str:
    """Join a streamed task output into one string."""
    chunks: list[str] = []
    async for chunk in stream:
        chunks.append(chunk if isinstance(chunk, str) else str(chunk))
    return "".join(chunks)


async def invoke_task(
    task: Callable[..., Any],
    unit: ExecutionUnit,
    ctx: UnitContext,
) -> Any:
    """Call a task for one unit.

    Variant evals call ``task(input, variant_input)``, others
    ``task(input)``. Async-iterator outputs are collected into a string.
    """
    args: tuple[Any, ...] = (unit.input,)
    if unit.has_variant:
        args = (unit.input, unit.variant_input)
    output = await call_with_context(task, *args, ctx=ctx)
    if inspect.isasyncgen(output) or isinstance(output, AsyncIterator):
        output = await collect_stream(output)
    return output


class AsyncioTaskExecutor:
    """Default executor: bounded asyncio concurrency with a per-task timeout.

    Args:
        max_concurrency: Maximum number of tasks running at once.
        timeout_ms: Wall-clock budget per task in milliseconds.
    """

    def __init__(self, max_concurrency: int = 5, timeout_ms: float = 30_000) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be a positive integer")
        self.max_concurrency = max_concurrency
        self.timeout_ms = timeout_ms
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def execute_unit(
        self,
        unit: ExecutionUnit,
        run: Callable[[], Awaitable[Any]],
    ) -> UnitOutcome:
        """Run the unit's task.

        Raises:
            TaskTimeoutError: If the task exceeds ``timeout_ms``.
            Exception: Whatever the task itself raises.
        """
        async with self._semaphore:
            start = time.perf_counter()
            scope = asyncio.timeout(self.timeout_ms / 1000)
            try:
                async with scope:
                    output = await run()
            except TimeoutError as exc:
                if not scope.expired():
                    raise
                raise TaskTimeoutError(unit.eval_name, self.timeout_ms) from exc
            duration = (time.perf_counter() - start) * 1000
        return UnitOutcome(output=output, duration=duration)
