"""Line framing for chunked upstream bodies.

Network reads arrive as arbitrary byte windows. ``LineFramer`` keeps the
incomplete tail of the input (the residual buffer) until the next read
completes it, and turns every complete line into a parsed JSON object.

Two line conventions are supported:

- bare JSON lines (newline-delimited JSON), ``prefix=None``
- event-stream lines, ``prefix="data: "``; lines without the prefix
  (comments, ``event:``/``id:`` fields) carry no payload and are skipped

A line that is not a JSON object is reported through ``on_error`` and
skipped. It never aborts the stream.
"""
import codecs
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog

from shared.errors import FrameParseError

logger = structlog.get_logger(__name__)


def log_frame_error(error: FrameParseError) -> None:
    logger.warning("frame_parse_error", cause=error.cause, line=error.line[:100])


class LineFramer:
    def __init__(
        self,
        prefix: str | None = None,
        on_error: Callable[[FrameParseError], None] = log_frame_error,
    ) -> None:
        self.prefix = prefix
        self._on_error = on_error
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False

    @property
    def residual(self) -> str:
        return self._buffer

    def feed(self, data: bytes | str) -> list[dict[str, Any]]:
        """Append a read and return payloads of every line it completed."""
        if self._closed:
            raise RuntimeError("framer already flushed")
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def flush(self) -> list[dict[str, Any]]:
        """Process whatever is left at end of input and finalize."""
        if self._closed:
            return []
        self._closed = True
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._process(tail.split("\n"))

    def _process(self, lines: list[str]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for raw in lines:
            payload = self._parse_line(raw)
            if payload is not None:
                out.append(payload)
        return out

    def _parse_line(self, raw: str) -> dict[str, Any] | None:
        line = raw.rstrip("\r")
        if not line.strip():
            return None
        if self.prefix is not None:
            if not line.startswith(self.prefix):
                return None
            line = line[len(self.prefix):]
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            self._on_error(FrameParseError(line, f"invalid JSON ({e.msg})"))
            return None
        if not isinstance(payload, dict):
            self._on_error(FrameParseError(line, "expected a JSON object"))
            return None
        return payload


async def aiter_frames(
    source: AsyncIterator[bytes] | AsyncIterator[str],
    framer: LineFramer,
) -> AsyncIterator[dict[str, Any]]:
    """Drive ``framer`` over an async byte/text source, yielding payloads in order."""
    async for data in source:
        for payload in framer.feed(data):
            yield payload
    for payload in framer.flush():
        yield payload
