"""Internal run events.

procstream runtime module v0.1.0

The stream readers and the exit watcher never touch executor state. They
push these events into the run's channel and the supervisor applies them in
order, so the way the OS delivers bytes stays separate from the way a
consumer waits for a line.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StreamName",
    "EventKind",
    "ChunkEvent",
    "ExitEvent",
    "FailureEvent",
    "ProcessEvent",
]


class StreamName(str, Enum):
    """Captured output streams."""

    STDOUT = "stdout"
    STDERR = "stderr"


class EventKind(str, Enum):
    CHUNK = "chunk"
    EXIT = "exit"
    FAILURE = "failure"


class RunEventBase(BaseModel):
    """Common fields of all run events.

    Attributes:
        timestamp: Unix timestamp (seconds) at which the event was produced
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time)


class ChunkEvent(RunEventBase):
    """Decoded text read from one stream."""

    kind: Literal[EventKind.CHUNK] = EventKind.CHUNK
    stream: StreamName
    text: str


class ExitEvent(RunEventBase):
    """The child exited and both streams reached EOF.

    Negative exit codes mean the child was killed by that signal.
    """

    kind: Literal[EventKind.EXIT] = EventKind.EXIT
    exit_code: int


class FailureEvent(RunEventBase):
    """Spawn or stream failure that ends the run."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal[EventKind.FAILURE] = EventKind.FAILURE
    error: Exception


ProcessEvent = ChunkEvent | ExitEvent | FailureEvent
