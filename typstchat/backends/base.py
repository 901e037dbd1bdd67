"""Base interface for streaming language model backends."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional

from ..contracts import ChatMessage, ToolInvocation


class BackendEventKind(str, Enum):
    TEXT = "text"
    TOOL_START = "tool_start"
    TOOL_INPUT = "tool_input"
    TOOL_STOP = "tool_stop"


@dataclass(frozen=True)
class BackendEvent:
    """Provider-neutral increment of a model response stream.

    A tool block is delimited by ``TOOL_START`` and ``TOOL_STOP``; the
    ``TOOL_INPUT`` events in between carry raw JSON fragments in ``text``.
    """

    kind: BackendEventKind
    text: str = ""
    tool_name: str = ""
    tool_call_id: str = ""

    @classmethod
    def text_delta(cls, text: str) -> "BackendEvent":
        return cls(kind=BackendEventKind.TEXT, text=text)

    @classmethod
    def tool_start(cls, tool_name: str, tool_call_id: str) -> "BackendEvent":
        return cls(
            kind=BackendEventKind.TOOL_START, tool_name=tool_name, tool_call_id=tool_call_id
        )

    @classmethod
    def tool_input(cls, fragment: str) -> "BackendEvent":
        return cls(kind=BackendEventKind.TOOL_INPUT, text=fragment)

    @classmethod
    def tool_stop(cls) -> "BackendEvent":
        return cls(kind=BackendEventKind.TOOL_STOP)


@dataclass
class ToolExchange:
    """The tool round-trip replayed to the model on the continuation call."""

    assistant_text: str
    invocation: ToolInvocation
    result_text: str


@dataclass
class ModelCall:
    """One request to the model backend."""

    messages: List[ChatMessage]
    max_tokens: int
    exchange: Optional[ToolExchange] = None


class ModelBackend(metaclass=abc.ABCMeta):
    """Abstract streaming model backend.

    The system prompt and tool definition belong to the backend instance;
    a call only carries the conversation.
    """

    @abc.abstractmethod
    def stream(self, call: ModelCall) -> AsyncIterator[BackendEvent]:
        """Yield response increments for ``call``.

        Raises:
            ModelStreamError: If the backend connection or protocol fails.
        """
        raise NotImplementedError
