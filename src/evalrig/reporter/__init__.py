"""Reporter pipeline: run events, persistence and live broadcast."""

from evalrig.reporter.broadcast import Broadcaster, Subscription
from evalrig.reporter.events import (
    EvalBegunEvent,
    Event,
    ResultStartedEvent,
    ResultSubmittedEvent,
    RunBegunEvent,
    RunEndedEvent,
    deserialize_event,
    offload_event,
    serialize_event,
)
from evalrig.reporter.pipeline import EventPipeline
from evalrig.reporter.recorder import (
    IdleServerState,
    RunningServerState,
    RunRecorder,
    ServerState,
)

__all__ = [
    "Broadcaster",
    "EvalBegunEvent",
    "Event",
    "EventPipeline",
    "IdleServerState",
    "ResultStartedEvent",
    "ResultSubmittedEvent",
    "RunBegunEvent",
    "RunEndedEvent",
    "RunRecorder",
    "RunningServerState",
    "ServerState",
    "Subscription",
    "deserialize_event",
    "offload_event",
    "serialize_event",
]
