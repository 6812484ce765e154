"""Stream events and their text/event-stream encoding.

Wire format, one event per ``data:`` line followed by a blank line::

    data: {"chunk": "He", "done": false}
    data: {"chunk": "", "done": true}
    data: {"error": "Failed to stream content", "done": true}

Comment lines (``: heartbeat``) carry no payload and are skipped by readers.
"""
import json
from dataclasses import dataclass
from typing import Any, Union

DATA_PREFIX = "data: "
HEARTBEAT = ": heartbeat\n\n"


@dataclass(frozen=True)
class ChunkEvent:
    text: str

    terminal = False

    def payload(self) -> dict[str, Any]:
        return {"chunk": self.text, "done": False}


@dataclass(frozen=True)
class DoneEvent:
    terminal = True

    def payload(self) -> dict[str, Any]:
        return {"chunk": "", "done": True}


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    terminal = True

    def payload(self) -> dict[str, Any]:
        return {"error": self.message, "done": True}


@dataclass(frozen=True)
class Heartbeat:
    """Keep-alive comment. Not part of the event sequence."""

    terminal = False


StreamEvent = Union[ChunkEvent, DoneEvent, ErrorEvent]


def encode_event(event: StreamEvent | Heartbeat) -> str:
    if isinstance(event, Heartbeat):
        return HEARTBEAT
    return f"{DATA_PREFIX}{json.dumps(event.payload(), ensure_ascii=False)}\n\n"


def decode_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map a parsed ``data:`` payload to an event. Unknown shapes give None."""
    if payload.get("error"):
        return ErrorEvent(str(payload["error"]))
    if payload.get("done"):
        return DoneEvent()
    chunk = payload.get("chunk")
    if isinstance(chunk, str):
        return ChunkEvent(chunk)
    return None
