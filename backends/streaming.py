"""
Server-sent-event decoding for streamed chat completions.

Backends stream a completion as a sequence of frames of the form

    data: {"choices":[{"delta":{"content":"Hel"}}]}

separated by newlines and terminated by `data: [DONE]`. Decoding is split in two steps that
never depend on each other: `decode_stream_chunk` / `StreamAccumulator` turn raw transport
chunks into text deltas and an accumulated answer, while `forward_to_sink` pushes those deltas
to whatever output channel the caller supplied (an SSE response, a queue, a test list). The
decoder therefore runs without any transport or output channel attached.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

STREAM_DATA_MARKER = "data:"
STREAM_DONE_SENTINEL = "[DONE]"

# Sink receives fully formatted SSE event strings
StreamSink = Callable[[str], None]


def extract_delta(frame: dict) -> Optional[str]:
    """Return `choices[0].delta.content` of a decoded frame, or None when absent or empty."""
    try:
        content = frame["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


def decode_stream_chunk(chunk: str) -> Tuple[List[str], bool]:
    """
    Decode every complete frame contained in one chunk of a streamed response.

    Lines that do not start with the `data: ` marker are ignored, frames whose payload is not
    valid JSON are skipped, and the `[DONE]` sentinel stops decoding.

    Args:
        chunk (str): Text received from the transport; may hold several frames

    Returns:
        Tuple[List[str], bool]: The text deltas in arrival order and whether the end-of-stream
        sentinel was seen.
    """
    deltas: List[str] = []
    for raw_line in chunk.splitlines():
        line = raw_line.strip()
        if not line.startswith(STREAM_DATA_MARKER):
            continue
        payload = line[len(STREAM_DATA_MARKER):].strip()
        if payload == STREAM_DONE_SENTINEL:
            return deltas, True
        if not payload:
            continue
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON stream frame: %s", payload[:80])
            continue
        delta = extract_delta(frame)
        if delta is not None:
            deltas.append(delta)
    return deltas, False


class StreamAccumulator:
    """
    Stateful wrapper around `decode_stream_chunk` for chunks that split frames arbitrarily.

    Transports hand over chunks of whatever size arrived on the socket, so a frame can be cut in
    the middle. Incomplete trailing lines are buffered until the next chunk (or `finish`).
    """

    def __init__(self):
        self._buffer = ""
        self._parts: List[str] = []
        self.done = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> List[str]:
        """Consume one transport chunk and return the deltas it completed."""
        if self.done or not chunk:
            return []
        self._buffer += chunk
        complete, newline, remainder = self._buffer.rpartition("\n")
        if not newline:
            return []
        self._buffer = remainder
        return self._consume(complete)

    def finish(self) -> List[str]:
        """Flush a final frame that arrived without a trailing newline."""
        if self.done or not self._buffer:
            return []
        pending, self._buffer = self._buffer, ""
        return self._consume(pending)

    def _consume(self, text: str) -> List[str]:
        deltas, done = decode_stream_chunk(text)
        self._parts.extend(deltas)
        if done:
            self.done = True
            self._buffer = ""
        return deltas


def format_chunk_event(delta: str) -> str:
    """SSE event sent to the caller for one text delta."""
    return f"data: {json.dumps({'type': 'chunk', 'content': delta})}\n\n"


def forward_to_sink(deltas: Iterable[str], sink: Optional[StreamSink]) -> None:
    """Send each delta to the caller's sink as a `chunk` event; no-op without a sink."""
    if sink is None:
        return
    for delta in deltas:
        sink(format_chunk_event(delta))


def decode_stream(chunks: Iterable[str], sink: Optional[StreamSink] = None) -> str:
    """
    Drive a full stream through a StreamAccumulator, forwarding deltas as they complete.

    Returns:
        str: The accumulated completion text.
    """
    accumulator = StreamAccumulator()
    for chunk in chunks:
        forward_to_sink(accumulator.feed(chunk), sink)
        if accumulator.done:
            break
    forward_to_sink(accumulator.finish(), sink)
    return accumulator.text
