"""Model adapter contract used inside eval tasks.

Tasks subclass BaseAdapter for whatever model they call and implement
send_turn(). Wrapping an adapter with ``ctx.model(adapter)`` adds trace
reporting and response caching without changing the task code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class AdapterTurnResult:
    """Reply to one send_turn() call.

    ``to_dict``/``from_dict`` give the JSON form stored by the cache.
    """

    content: str | None
    usage: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdapterTurnResult:
        return cls(
            content=data.get("content"),
            usage=TokenUsage(**data.get("usage", {})),
        )


@dataclass
class Message:
    role: str
    content: str | None = None


@dataclass
class AdapterConfig:
    """Generation parameters for a single call; part of the cache key."""

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    seed: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)


class BaseAdapter(ABC):
    """Abstract base class for model adapters.

    Subclasses must implement send_turn(). Streaming is optional: the
    default stream_turn() yields the full content of send_turn() as a
    single chunk.
    """

    @abstractmethod
    async def send_turn(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        config: AdapterConfig | None = None,
    ) -> AdapterTurnResult:
        """Send a single turn to the model and return the reply.

        Args:
            messages: Conversation history.
            tools: Optional tool definitions in provider format.
            config: Optional generation parameters for this turn.
        """
        ...

    async def stream_turn(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        config: AdapterConfig | None = None,
    ) -> AsyncIterator[str]:
        """Stream a single turn as text chunks."""
        result = await self.send_turn(messages, tools, config)
        if result.content:
            yield result.content

    def model_id(self) -> str:
        """Identity of the underlying model, used in cache keys.

        Defaults to the class name; override when one adapter class
        serves several models.
        """
        return type(self).__name__
