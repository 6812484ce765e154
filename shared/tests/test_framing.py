"""Tests for LineFramer: residual buffering, prefixes, malformed lines."""
import pytest

from shared.errors import FrameParseError
from shared.framing import LineFramer, aiter_frames

NDJSON = (
    '{"response": "Hé", "done": false}\n'
    '{"response": "llo ✓", "done": false}\r\n'
    "\n"
    '{"response": "", "done": true}\n'
).encode("utf-8")


def _frame_in_two(data: bytes, offset: int) -> list[dict]:
    framer = LineFramer()
    return framer.feed(data[:offset]) + framer.feed(data[offset:]) + framer.flush()


def test_framing_is_independent_of_read_boundaries() -> None:
    expected = LineFramer().feed(NDJSON)
    assert [f["response"] for f in expected] == ["Hé", "llo ✓", ""]
    for offset in range(len(NDJSON) + 1):
        assert _frame_in_two(NDJSON, offset) == expected, offset


def test_byte_at_a_time_matches_single_read() -> None:
    framer = LineFramer()
    frames = []
    for i in range(len(NDJSON)):
        frames.extend(framer.feed(NDJSON[i:i + 1]))
    frames.extend(framer.flush())
    assert frames == LineFramer().feed(NDJSON)


def test_incomplete_tail_is_held_until_completed() -> None:
    framer = LineFramer()
    assert framer.feed('{"a": 1}\n{"b"') == [{"a": 1}]
    assert framer.residual == '{"b"'
    assert framer.feed(": 2}\n") == [{"b": 2}]
    assert framer.residual == ""


def test_flush_processes_line_without_trailing_newline() -> None:
    framer = LineFramer()
    assert framer.feed('{"a": 1}') == []
    assert framer.flush() == [{"a": 1}]


def test_feed_after_flush_is_an_error() -> None:
    framer = LineFramer()
    framer.flush()
    with pytest.raises(RuntimeError):
        framer.feed("{}\n")


def test_prefix_skips_comments_and_other_fields() -> None:
    framer = LineFramer(prefix="data: ")
    frames = framer.feed(
        ": heartbeat\n\n"
        "event: message\n"
        'data: {"chunk": "Hi", "done": false}\n\n'
        'data: {"chunk": "", "done": true}\n\n'
    )
    assert frames == [{"chunk": "Hi", "done": False}, {"chunk": "", "done": True}]


def test_malformed_lines_are_reported_and_skipped() -> None:
    errors: list[FrameParseError] = []
    framer = LineFramer(on_error=errors.append)
    frames = framer.feed('{"a": 1}\nnot json\n[1, 2]\n{"b": 2}\n')
    assert frames == [{"a": 1}, {"b": 2}]
    assert [e.line for e in errors] == ["not json", "[1, 2]"]
    assert errors[1].cause == "expected a JSON object"


@pytest.mark.asyncio
async def test_aiter_frames_drives_framer_over_reads() -> None:
    async def reads():
        yield b'{"response": "a"}\n{"resp'
        yield b'onse": "b"}'

    frames = [f async for f in aiter_frames(reads(), LineFramer())]
    assert frames == [{"response": "a"}, {"response": "b"}]
