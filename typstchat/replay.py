"""Rebuild UI transcript state from persisted transcript entries."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel

from .contracts import ChatMessage, RenderedArtifact
from .persistence import EntrySource, TranscriptEntry

logger = logging.getLogger(__name__)

ToolStatus = Literal["calling", "success", "error"]


class UIMessage(BaseModel):
    """One message as the chat interface displays it."""

    id: str
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    timestamp: datetime
    tool: Optional[str] = None
    status: Optional[ToolStatus] = None
    description: Optional[str] = None
    code: Optional[str] = None
    error: Optional[str] = None
    has_artifact: bool = False


class Transcript(BaseModel):
    messages: List[UIMessage]
    artifact: Optional[RenderedArtifact] = None


def _ordered(entries: Iterable[TranscriptEntry]) -> List[TranscriptEntry]:
    return sorted(entries, key=TranscriptEntry.sort_key)


def _tool_message(entry: TranscriptEntry, message_id: str) -> UIMessage:
    tool_input: Dict[str, Any] = entry.payload.get("input") or {}
    return UIMessage(
        id=message_id,
        role="tool",
        timestamp=entry.timestamp,
        tool=entry.payload.get("tool"),
        status="calling",
        description=tool_input.get("description"),
        code=tool_input.get("code"),
    )


def _resolve(message: UIMessage, payload: Dict[str, Any]) -> None:
    if payload.get("success"):
        message.status = "success"
        message.has_artifact = payload.get("artifact") is not None
    else:
        message.status = "error"
        message.error = payload.get("error")


def build_transcript(entries: Iterable[TranscriptEntry]) -> Transcript:
    """Turn a conversation's entries into UI messages plus its latest artifact.

    Tool outcomes are paired positionally: each ``tool_result`` closes the
    most recently opened tool message that is still ``calling``. An
    invocation without an outcome stays ``calling``. Message ids derive from
    entry positions, so the same log always yields the same transcript.
    """
    messages: List[UIMessage] = []
    unresolved: List[UIMessage] = []
    artifact: Optional[RenderedArtifact] = None

    for index, entry in enumerate(_ordered(entries)):
        message_id = f"{entry.source.value}-{index}"
        payload = entry.payload

        if entry.source is EntrySource.USER:
            messages.append(
                UIMessage(
                    id=message_id,
                    role="user",
                    content=payload.get("content", ""),
                    timestamp=entry.timestamp,
                )
            )
        elif entry.source is EntrySource.ASSISTANT:
            messages.append(
                UIMessage(
                    id=message_id,
                    role="assistant",
                    content=payload.get("message", ""),
                    timestamp=entry.timestamp,
                    has_artifact=bool(payload.get("hasArtifact")),
                    code=payload.get("artifactCode"),
                    error=payload.get("artifactError"),
                )
            )
        elif entry.source is EntrySource.TOOL_CALL:
            message = _tool_message(entry, message_id)
            messages.append(message)
            unresolved.append(message)
        elif entry.source is EntrySource.TOOL_RESULT:
            if unresolved:
                _resolve(unresolved.pop(), payload)
            else:
                logger.debug(f"Tool outcome {message_id} has no open invocation")
                orphan = UIMessage(
                    id=message_id,
                    role="tool",
                    timestamp=entry.timestamp,
                    tool=payload.get("tool"),
                )
                _resolve(orphan, payload)
                messages.append(orphan)
            stored = payload.get("artifact")
            if payload.get("success") and stored:
                artifact = RenderedArtifact(
                    code=stored.get("code", ""),
                    pages=list(stored.get("pages") or []),
                )

    return Transcript(messages=messages, artifact=artifact)


def prior_turns_from_entries(entries: Iterable[TranscriptEntry]) -> List[ChatMessage]:
    """Derive the user/assistant history sent to the model for a new turn.

    Tool entries are not replayed; their effect survives only through the
    assistant text that followed them.
    """
    history: List[ChatMessage] = []
    for entry in _ordered(entries):
        if entry.source is EntrySource.USER:
            content = entry.payload.get("content", "")
            if content:
                history.append(ChatMessage(role="user", content=content))
        elif entry.source is EntrySource.ASSISTANT:
            content = entry.payload.get("message", "")
            if content:
                history.append(ChatMessage(role="assistant", content=content))
    return history
