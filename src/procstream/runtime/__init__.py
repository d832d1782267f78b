"""Runtime module for line-oriented subprocess capture.

This module provides an asynchronous executor that spawns one child process,
reassembles its stdout/stderr into lines and serves them to awaiting readers,
plus a blocking run-to-completion helper.
"""

from __future__ import annotations

from .events import StreamName
from .executor import (
    END_OF_STREAM,
    EndOfStream,
    ProcessExecutor,
    RunOutcome,
    RunResult,
    RunState,
    run_captured,
    run_synchronously,
)
from .line_buffer import LineBuffer

__all__ = [
    "END_OF_STREAM",
    "EndOfStream",
    "LineBuffer",
    "ProcessExecutor",
    "RunOutcome",
    "RunResult",
    "RunState",
    "StreamName",
    "run_captured",
    "run_synchronously",
]
