"""Incremental decoder for newline-delimited JSON chat streams."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, List, Optional

from .errors import mentions_missing_model
from .types import GenerationStats

logger = logging.getLogger(__name__)

StreamEvent = Dict[str, Any]


def compute_stats(record: Dict[str, Any]) -> Optional[GenerationStats]:
    """Build the terminal stats record, or ``None`` when no eval duration was reported."""
    eval_duration = record.get("eval_duration") or 0
    if not eval_duration:
        return None
    eval_count = record.get("eval_count") or 0
    return GenerationStats(
        tokens_per_second=eval_count / (eval_duration / 1e9),
        eval_count=eval_count,
        eval_duration=eval_duration,
        total_duration=record.get("total_duration") or 0,
    )


class StreamDecoder:
    """Turns arbitrarily chunked bytes into content, stats and error events.

    The decoder closes after an error record or the completion record; any
    input after that point is ignored, so stats are always the final event.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False
        self.error: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        if self._closed:
            return []
        self._buffer += self._text_decoder.decode(chunk)
        events: List[StreamEvent] = []
        while not self._closed:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline].strip()
            self._buffer = self._buffer[newline + 1 :]
            if line:
                events.extend(self._decode_line(line))
        return events

    def finish(self) -> List[StreamEvent]:
        if self._closed:
            return []
        self._buffer += self._text_decoder.decode(b"", final=True)
        remainder = self._buffer.strip()
        self._buffer = ""
        events = self._decode_line(remainder) if remainder else []
        self._closed = True
        return events

    def _decode_line(self, line: str) -> List[StreamEvent]:
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping malformed stream line %r: %s", line[:200], exc)
            return []
        if not isinstance(record, dict):
            logger.warning("Skipping non-object stream record: %r", line[:200])
            return []
        logger.debug("Parsed stream record: %s", record)

        if record.get("error"):
            message = str(record["error"])
            self.error = message
            self._closed = True
            kind = "model_not_found" if mentions_missing_model(message) else "protocol"
            return [{"type": "error", "kind": kind, "message": f"Model server returned an error: {message}"}]

        events: List[StreamEvent] = []
        message = record.get("message")
        if isinstance(message, dict) and "content" in message:
            content = message["content"]
            if content is not None:
                events.append({"type": "text_delta", "delta": str(content)})

        if record.get("done"):
            self._closed = True
            stats = compute_stats(record)
            if stats is not None:
                events.append({"type": "stats", "stats": stats})
        return events


def decode_stream(chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
    decoder = StreamDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.closed:
            return
    yield from decoder.finish()


async def adecode_stream(
    chunks: AsyncIterable[bytes],
    signal: Optional[asyncio.Event] = None,
) -> AsyncIterator[StreamEvent]:
    """Async counterpart of ``decode_stream``; stops quietly once ``signal`` is set."""
    decoder = StreamDecoder()
    async for chunk in chunks:
        if signal is not None and signal.is_set():
            return
        for event in decoder.feed(chunk):
            if signal is not None and signal.is_set():
                return
            yield event
        if decoder.closed:
            return
    for event in decoder.finish():
        if signal is not None and signal.is_set():
            return
        yield event
