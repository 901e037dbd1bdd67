"""Scripted model backend for tests and offline runs."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import AsyncIterator, Deque, Iterable, List, Optional, Sequence, Union

from ..constants import RENDER_TOOL_NAME
from ..errors import ModelStreamError
from .base import BackendEvent, ModelBackend, ModelCall

ScriptItem = Union[BackendEvent, Exception]


def scripted_text(text: str, chunk_size: int = 16) -> List[BackendEvent]:
    """Split ``text`` into text deltas."""
    return [
        BackendEvent.text_delta(text[i : i + chunk_size])
        for i in range(0, len(text), chunk_size)
    ]


def scripted_tool_call(
    code: str,
    description: str = "",
    *,
    tool_name: str = RENDER_TOOL_NAME,
    call_id: str = "toolu_01",
    raw_input: Optional[str] = None,
    chunk_size: int = 24,
) -> List[BackendEvent]:
    """Build a complete tool block whose JSON input arrives in fragments."""
    payload = raw_input if raw_input is not None else json.dumps(
        {"code": code, "description": description}
    )
    events = [BackendEvent.tool_start(tool_name, call_id)]
    events.extend(
        BackendEvent.tool_input(payload[i : i + chunk_size])
        for i in range(0, len(payload), chunk_size)
    )
    events.append(BackendEvent.tool_stop())
    return events


class ScriptedBackend(ModelBackend):
    """Replay one pre-built script per model call.

    An ``Exception`` inside a script is raised at that point of the stream.
    Every call is recorded in ``calls``.
    """

    def __init__(self, scripts: Iterable[Sequence[ScriptItem]]) -> None:
        self._scripts: Deque[List[ScriptItem]] = deque(list(s) for s in scripts)
        self.calls: List[ModelCall] = []

    @property
    def remaining(self) -> int:
        return len(self._scripts)

    async def stream(self, call: ModelCall) -> AsyncIterator[BackendEvent]:
        self.calls.append(call)
        if not self._scripts:
            raise ModelStreamError("No scripted response left")
        script = self._scripts.popleft()
        for item in script:
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item
