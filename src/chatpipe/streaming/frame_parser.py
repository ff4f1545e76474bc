"""
Incremental decoder for the text-event stream.

Feed text or bytes in arbitrary chunks and collect complete frames. Lines
split across chunk boundaries are carried over until their newline arrives.
Each ``data:`` line dispatches its own frame using the most recent
``event:`` type, so token deltas are delivered without waiting for a
blank-line terminator.
"""

from __future__ import annotations

import codecs

from chatpipe.core.constants import SSE_DATA_PREFIX, SSE_EVENT_PREFIX, STREAM_DONE_SENTINEL
from chatpipe.models.event_models import Frame


class FrameParser:
    """Line-oriented frame parser with carry-over between chunks.

    Usage:
        parser = FrameParser()
        async for chunk in response:
            for frame in parser.feed(chunk):
                handle(frame)
            if parser.done:
                break
    """

    __slots__ = ("_buffer", "_decoder", "_done", "_event", "skipped_lines")

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event = ""
        self._done = False
        self.skipped_lines = 0

    @property
    def done(self) -> bool:
        """True once the [DONE] sentinel has been seen."""
        return self._done

    @property
    def pending(self) -> str:
        """Incomplete trailing line held until the next chunk."""
        return self._buffer

    @property
    def current_event(self) -> str:
        return self._event

    def feed(self, chunk: str | bytes) -> list[Frame]:
        """Consume a chunk and return the frames completed by it."""
        if self._done:
            return []

        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        frames: list[Frame] = []
        for raw_line in lines:
            line = raw_line.removesuffix("\r")
            if not line.strip():
                continue

            if line.startswith(SSE_EVENT_PREFIX):
                self._event = line[len(SSE_EVENT_PREFIX) :].strip()
            elif line.startswith(SSE_DATA_PREFIX):
                data = line[len(SSE_DATA_PREFIX) :]
                if data == STREAM_DONE_SENTINEL:
                    self._done = True
                    self._buffer = ""
                    break
                frames.append(Frame(event=self._event, data=data))
            else:
                # Comments, unknown fields and malformed lines are not fatal
                self.skipped_lines += 1

        return frames

    def reset(self) -> None:
        """Forget buffered text, event type and sentinel state."""
        self._decoder.reset()
        self._buffer = ""
        self._event = ""
        self._done = False
        self.skipped_lines = 0


__all__ = ["FrameParser"]
