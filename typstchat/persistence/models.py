"""Data models for persisted conversation state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import RenderedArtifact


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntrySource(str, Enum):
    """Discriminator for transcript entries; selects the payload shape."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


class TranscriptEntry(BaseModel):
    """One append-only row of a conversation's transcript."""

    id: Optional[int] = None
    conversation_id: str
    source: EntrySource
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def sort_key(self) -> tuple[datetime, int]:
        return (self.timestamp, self.id or 0)


class Conversation(BaseModel):
    """Persisted conversation metadata and its cached latest artifact."""

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    title: Optional[str] = None
    latest_artifact: Optional[RenderedArtifact] = None
