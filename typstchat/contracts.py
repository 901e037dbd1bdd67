"""Core message contracts for the typstchat orchestrator."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ToolInputParseError

PNG_DATA_URL_PREFIX = "data:image/png;base64,"
PDF_DATA_URL_PREFIX = "data:application/pdf;base64,"

RENDER_SUCCESS_MESSAGE = "Document rendered successfully"


class RenderTypstInput(BaseModel):
    """Input the model must supply when invoking the render tool."""

    code: str
    description: str

    @classmethod
    def from_raw_json(cls, raw: str) -> "RenderTypstInput":
        """Parse buffered tool input fragments.

        Raises:
            ToolInputParseError: If ``raw`` is not a JSON object matching the
                tool's input schema.
        """
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise ToolInputParseError(f"Tool input is not valid JSON: {exc}", raw) from exc
        if not isinstance(data, dict):
            raise ToolInputParseError("Tool input must be a JSON object", raw)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ToolInputParseError(f"Tool input does not match schema: {exc}", raw) from exc

    @classmethod
    def empty(cls) -> "RenderTypstInput":
        """Sentinel input used when the model's input could not be parsed."""
        return cls(code="", description="")


class ChatMessage(BaseModel):
    """One user or assistant message of conversation history."""

    role: Literal["user", "assistant"]
    content: str


class RenderedArtifact(BaseModel):
    """Output of one successful render: source markup, pages and export."""

    code: str
    pages: List[str] = Field(default_factory=list)
    pdf_url: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "pages": list(self.pages)}
        if self.pdf_url:
            data["pdfUrl"] = self.pdf_url
        return data


class ToolInvocation(BaseModel):
    """A tool call extracted from the model stream.

    ``call_id`` is provisional: it is only meaningful for the lifetime of the
    streamed turn and is never persisted as a join key.
    """

    name: str
    call_id: str
    input: RenderTypstInput


class ToolOutcome(BaseModel):
    """Result of executing a tool invocation."""

    tool: str
    code: str
    success: bool
    artifact: Optional[RenderedArtifact] = None
    error: Optional[str] = None

    def result_text(self) -> str:
        """Human readable result handed back to the model."""
        if self.success:
            return RENDER_SUCCESS_MESSAGE
        return f"Error: {self.error}"


class StreamEventKind(str, Enum):
    TURN_STARTED = "turn_started"
    TEXT_DELTA = "text_delta"
    TOOL_STARTED = "tool_started"
    TOOL_INPUT_READY = "tool_input_ready"
    TOOL_EXECUTING = "tool_executing"
    TOOL_FINISHED = "tool_finished"
    CONTINUATION_STARTED = "continuation_started"
    TURN_COMPLETE = "turn_complete"
    TURN_FAILED = "turn_failed"


# Frame kind sent over the transport for each event kind.
WIRE_KINDS: Dict[StreamEventKind, str] = {
    StreamEventKind.TURN_STARTED: "conversation_id",
    StreamEventKind.TEXT_DELTA: "text",
    StreamEventKind.TOOL_STARTED: "tool_start",
    StreamEventKind.TOOL_INPUT_READY: "tool_input",
    StreamEventKind.TOOL_EXECUTING: "tool_executing",
    StreamEventKind.TOOL_FINISHED: "tool_result",
    StreamEventKind.CONTINUATION_STARTED: "assistant_continue",
    StreamEventKind.TURN_COMPLETE: "done",
    StreamEventKind.TURN_FAILED: "error",
}

TERMINAL_KINDS = frozenset({StreamEventKind.TURN_COMPLETE, StreamEventKind.TURN_FAILED})


class StreamEvent(BaseModel):
    """One discrete orchestration event on the live transport.

    Events are ephemeral; the transcript store keeps the outcome of a turn,
    not every delta.
    """

    kind: StreamEventKind
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def wire_kind(self) -> str:
        return WIRE_KINDS[self.kind]

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @classmethod
    def turn_started(cls, conversation_id: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TURN_STARTED, data={"conversationId": conversation_id})

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TEXT_DELTA, data={"text": text})

    @classmethod
    def tool_started(cls, tool: str, call_id: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TOOL_STARTED, data={"tool": tool, "id": call_id})

    @classmethod
    def tool_input_ready(cls, invocation: ToolInvocation) -> "StreamEvent":
        return cls(
            kind=StreamEventKind.TOOL_INPUT_READY,
            data={"tool": invocation.name, "input": invocation.input.model_dump()},
        )

    @classmethod
    def tool_executing(cls, tool: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TOOL_EXECUTING, data={"tool": tool})

    @classmethod
    def tool_finished(cls, outcome: ToolOutcome) -> "StreamEvent":
        if outcome.success and outcome.artifact is not None:
            data = {
                "tool": outcome.tool,
                "success": True,
                "output": outcome.artifact.to_wire(),
            }
        else:
            data = {
                "tool": outcome.tool,
                "success": False,
                "error": outcome.error,
                "code": outcome.code,
            }
        return cls(kind=StreamEventKind.TOOL_FINISHED, data=data)

    @classmethod
    def continuation_started(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.CONTINUATION_STARTED)

    @classmethod
    def turn_complete(cls, message: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TURN_COMPLETE, data={"message": message})

    @classmethod
    def turn_failed(cls, error: str) -> "StreamEvent":
        return cls(kind=StreamEventKind.TURN_FAILED, data={"error": error})
