"""Run event model tests."""

from __future__ import annotations

import pydantic
import pytest

from procstream.runtime.events import (
    ChunkEvent,
    EventKind,
    ExitEvent,
    FailureEvent,
    StreamName,
)


class TestRunEvents:
    def test_chunk_event(self):
        event = ChunkEvent(stream="stderr", text="partial")
        assert event.kind is EventKind.CHUNK
        assert event.stream is StreamName.STDERR
        assert event.text == "partial"
        assert event.timestamp > 0

    def test_unknown_stream_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            ChunkEvent(stream="stdin", text="x")

    def test_exit_event_keeps_negative_code(self):
        assert ExitEvent(exit_code=-15).exit_code == -15

    def test_failure_event_carries_exception(self):
        error = OSError("boom")
        event = FailureEvent(error=error)
        assert event.kind is EventKind.FAILURE
        assert event.error is error

    def test_events_are_frozen(self):
        event = ExitEvent(exit_code=0)
        with pytest.raises(pydantic.ValidationError):
            event.exit_code = 1
