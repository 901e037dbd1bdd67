"""Store abstraction for conversation transcripts."""

from __future__ import annotations

from typing import Any, Protocol

from .models import Conversation, EntrySource, TranscriptEntry


class TranscriptStore(Protocol):
    """Protocol for append-only transcript persistence backends.

    Conversations are created lazily by the first ``append`` and their
    ``updated_at`` is bumped on every append. Nothing is ever deleted.
    """

    async def append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        """Append an entry and return it with its id and timestamp."""

    async def read_all(self, conversation_id: str) -> list[TranscriptEntry]:
        """Return all entries for the conversation ordered by timestamp."""

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Retrieve a conversation with its cached artifact."""

    async def list_conversations(
        self, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        """Return conversations, most recently updated first, without artifacts."""

    async def set_latest_artifact(
        self,
        conversation_id: str,
        code: str,
        pages: list[str],
        pdf_url: str | None = None,
    ) -> None:
        """Cache the most recent successful render on the conversation."""

    async def set_title(self, conversation_id: str, title: str) -> None:
        """Set the human readable conversation title."""
