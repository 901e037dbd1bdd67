"""Wire framing for orchestration events.

A frame has the shape ``event: <kind>\\ndata: <json>\\n\\n``. The JSON body is
serialized on one line, so the blank-line delimiter can never occur inside a
frame.
"""

from __future__ import annotations

import json
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator, Iterator, List, Optional

from .contracts import WIRE_KINDS, StreamEvent, StreamEventKind

FRAME_DELIMITER = "\n\n"

_KINDS_BY_WIRE = {wire: kind for kind, wire in WIRE_KINDS.items()}

# Position of each tool lifecycle frame; each must follow the previous one.
_TOOL_STAGES = {
    StreamEventKind.TOOL_STARTED: 0,
    StreamEventKind.TOOL_INPUT_READY: 1,
    StreamEventKind.TOOL_EXECUTING: 2,
    StreamEventKind.TOOL_FINISHED: 3,
}


class FrameDecodeError(ValueError):
    """A frame could not be parsed."""


def encode_event(event: StreamEvent) -> str:
    """Serialize one event into a self-describing wire frame."""
    body = json.dumps(event.data, ensure_ascii=False)
    return f"event: {event.wire_kind}\ndata: {body}{FRAME_DELIMITER}"


async def encode_stream(events: AsyncGenerator[StreamEvent, None]) -> AsyncIterator[str]:
    """Encode events one frame per item, preserving emission order.

    Closing the frame stream closes ``events`` as well, so a turn underneath
    it finalizes as soon as the client goes away.
    """
    async with aclosing(events) as source:
        async for event in source:
            yield encode_event(event)


def decode_frame(frame: str) -> StreamEvent:
    """Parse a single frame back into a ``StreamEvent``."""
    wire_kind: Optional[str] = None
    body: Optional[str] = None
    for line in frame.strip("\n").split("\n"):
        if line.startswith("event:"):
            wire_kind = line[len("event:") :].strip()
        elif line.startswith("data:"):
            body = line[len("data:") :].strip()
    if wire_kind is None or body is None:
        raise FrameDecodeError(f"Incomplete frame: {frame!r}")
    kind = _KINDS_BY_WIRE.get(wire_kind)
    if kind is None:
        raise FrameDecodeError(f"Unknown frame kind: {wire_kind}")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(f"Frame body is not JSON: {exc}") from exc
    return StreamEvent(kind=kind, data=data)


def split_frames(buffer: str) -> tuple[List[str], str]:
    """Split complete frames off ``buffer``; return them and the remainder."""
    parts = buffer.split(FRAME_DELIMITER)
    return [p for p in parts[:-1] if p.strip()], parts[-1]


def iter_frames(payload: str) -> Iterator[StreamEvent]:
    """Decode every complete frame of a transport payload."""
    frames, _ = split_frames(payload)
    for frame in frames:
        yield decode_frame(frame)


class FrameSequenceChecker:
    """Detect ordering anomalies in a received frame sequence.

    Frames must open with the conversation id, tool lifecycle frames must
    follow their ``tool_start`` in order, and nothing may follow a terminal
    frame.
    """

    def __init__(self) -> None:
        self.anomalies: List[str] = []
        self._seen_start = False
        self._terminated = False
        self._tool_stage: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.anomalies

    def observe(self, event: StreamEvent) -> Optional[str]:
        problem = self._check(event)
        if problem:
            self.anomalies.append(problem)
        return problem

    def _check(self, event: StreamEvent) -> Optional[str]:
        kind = event.kind
        if self._terminated:
            return f"{event.wire_kind} received after the stream terminated"
        if not self._seen_start and kind not in (
            StreamEventKind.TURN_STARTED,
            StreamEventKind.TURN_FAILED,
        ):
            return f"{event.wire_kind} received before conversation_id"
        if kind is StreamEventKind.TURN_STARTED:
            self._seen_start = True
        elif kind in _TOOL_STAGES:
            stage = _TOOL_STAGES[kind]
            if stage == 0:
                if self._tool_stage not in (None, 3):
                    return "tool_start received while another tool is unresolved"
            elif self._tool_stage is None:
                return f"{event.wire_kind} received without a matching tool_start"
            elif stage != self._tool_stage + 1:
                return f"{event.wire_kind} received out of order"
            self._tool_stage = stage
        if event.is_terminal:
            self._terminated = True
        return None
