"""Split a raw byte stream into complete lines."""
from __future__ import annotations


class LineBuffer:
    """Accumulates stdout chunks and hands back complete lines only.

    A trailing partial line stays buffered until a later chunk
    completes it, so a line is never split across two parse calls
    and never returned twice.
    """

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    def feed(self, chunk: bytes) -> list[str]:
        if b"\n" not in chunk:
            self._pending.extend(chunk)
            return []
        self._pending.extend(chunk)
        *complete, rest = bytes(self._pending).split(b"\n")
        self._pending = bytearray(rest)
        return [line.decode("utf-8", errors="replace") for line in complete]

    def flush(self) -> str | None:
        """Return and clear the buffered remainder (None when empty)."""
        if not self._pending:
            return None
        text = self._pending.decode("utf-8", errors="replace")
        self._pending.clear()
        return text

    def discard(self) -> int:
        """Drop the buffered remainder; returns the number of bytes dropped."""
        dropped = len(self._pending)
        self._pending.clear()
        return dropped
