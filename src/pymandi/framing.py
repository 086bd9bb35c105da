"""Reassemble line-delimited frames from raw serial chunks."""

from __future__ import annotations

import codecs
import re

_LINE_BREAKS = re.compile(r"[\r\n]+")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def clean_frame(text: str) -> str:
    """Replace control characters with spaces and strip the result."""
    return _CONTROL_CHARS.sub(" ", text).strip()


class LineFramer:
    """Incremental CR/LF framer.

    Chunks may end anywhere, including inside a multibyte character or
    between ``\\r`` and ``\\n``; the output for a byte stream does not
    depend on how it was chunked. The trailing unterminated segment stays
    buffered until a later delimiter arrives.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Buffered text that has not been terminated yet."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Consume *chunk* and return the frames it completes, in order."""
        if not chunk:
            return []
        self._buffer += self._decoder.decode(chunk)
        parts = _LINE_BREAKS.split(self._buffer)
        self._buffer = parts.pop()
        frames: list[str] = []
        for part in parts:
            frame = clean_frame(part)
            if frame:
                frames.append(frame)
        return frames

    def reset(self) -> str:
        """Drop buffered data (stream ended) and return what was discarded."""
        discarded = self._buffer
        self._buffer = ""
        self._decoder.reset()
        return discarded
