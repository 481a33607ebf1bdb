"""Incremental line buffering for byte streams split at arbitrary points."""

from __future__ import annotations

from typing import Optional

LINE_DELIMITER = b"\n"


def _decode_line(raw: bytes) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode("utf-8", errors="replace")


class LineBuffer:
    """Accumulate raw bytes and release complete newline-terminated lines.

    Splitting happens on bytes before decoding, so a multi-byte UTF-8
    character cut by a chunk boundary is reassembled before it is decoded.
    Only the bytes after the last delimiter are kept between feeds.
    """

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending_size(self) -> int:
        return len(self._pending)

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        self._pending.extend(chunk)
        end = self._pending.rfind(LINE_DELIMITER)
        if end == -1:
            return []
        complete = bytes(self._pending[:end])
        del self._pending[: end + 1]
        return [_decode_line(raw) for raw in complete.split(LINE_DELIMITER)]

    def flush(self) -> Optional[str]:
        """Return the unterminated tail (if any) and reset the buffer."""
        if not self._pending:
            return None
        tail = bytes(self._pending)
        self._pending.clear()
        return _decode_line(tail)
