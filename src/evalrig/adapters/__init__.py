"""evalrig adapters - model adapter abstraction layer.

Re-exports the BaseAdapter ABC and its message/result dataclasses.
"""

from evalrig.adapters.base import (
    AdapterConfig,
    AdapterTurnResult,
    BaseAdapter,
    Message,
    TokenUsage,
)

__all__ = [
    "AdapterConfig",
    "AdapterTurnResult",
    "BaseAdapter",
    "Message",
    "TokenUsage",
]
