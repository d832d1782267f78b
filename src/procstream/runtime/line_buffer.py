"""Line reassembly for one captured output stream.

procstream runtime module v0.1.0

A LineBuffer receives decoded text chunks of arbitrary size and exposes the
complete lines found in them, in arrival order. Reading is non-destructive:
consumers keep their own cursor and call read_at(cursor).
"""

from __future__ import annotations

__all__ = ["LineBuffer"]

DEFAULT_SEPARATOR = "\n"


class LineBuffer:
    """Accumulates text chunks and splits them into complete lines.

    Only separator-terminated segments become lines. The unterminated tail
    stays in ``pending`` until a later chunk completes it, or until
    flush_partial() is called explicitly.

    Example:
        buffer = LineBuffer()
        buffer.append_chunk("ab")
        buffer.append_chunk("\\ncd")
        buffer.read_at(0)   # "ab"
        buffer.read_at(1)   # None, "cd" is still pending
    """

    def __init__(self, separator: str = DEFAULT_SEPARATOR) -> None:
        if len(separator) != 1:
            raise ValueError(f"separator must be a single character, got {separator!r}")
        self._separator = separator
        self._pending = ""
        self._lines: list[str] = []

    @property
    def separator(self) -> str:
        return self._separator

    @property
    def pending(self) -> str:
        """Text received after the last separator."""
        return self._pending

    @property
    def lines(self) -> tuple[str, ...]:
        """Snapshot of the completed lines."""
        return tuple(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __repr__(self) -> str:
        return f"LineBuffer(lines={len(self._lines)}, pending={len(self._pending)} chars)"

    def append_chunk(self, chunk: str) -> int:
        """Append a decoded chunk.

        Args:
            chunk: Decoded text, any size, possibly empty

        Returns:
            Number of lines completed by this chunk
        """
        if not chunk:
            return 0

        pieces = (self._pending + chunk).split(self._separator)
        self._pending = pieces.pop()
        self._lines.extend(pieces)
        return len(pieces)

    def read_at(self, index: int) -> str | None:
        """Return the line at ``index``, or None if it is not available yet."""
        if 0 <= index < len(self._lines):
            return self._lines[index]
        return None

    def flush_partial(self) -> bool:
        """Promote a non-empty pending tail to a line.

        Returns:
            True if a line was added
        """
        if not self._pending:
            return False
        self._lines.append(self._pending)
        self._pending = ""
        return True
