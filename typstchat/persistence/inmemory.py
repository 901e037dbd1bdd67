"""In-memory implementation of the transcript store."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from ..contracts import RenderedArtifact
from .models import Conversation, EntrySource, TranscriptEntry, utcnow
from .repository import TranscriptStore


class InMemoryTranscriptStore(TranscriptStore):
    """Store transcripts in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._entries: Dict[str, List[TranscriptEntry]] = {}
        self._entry_id = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        async with self._lock:
            now = utcnow()
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id, created_at=now, updated_at=now)
                self._conversations[conversation_id] = conversation
            self._entry_id += 1
            entry = TranscriptEntry(
                id=self._entry_id,
                conversation_id=conversation_id,
                source=EntrySource(source),
                payload=dict(payload),
                timestamp=now,
            )
            self._entries.setdefault(conversation_id, []).append(entry)
            conversation.updated_at = now
            return entry.model_copy(deep=True)

    async def read_all(self, conversation_id: str) -> list[TranscriptEntry]:
        entries = self._entries.get(conversation_id, [])
        return [e.model_copy(deep=True) for e in sorted(entries, key=TranscriptEntry.sort_key)]

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def list_conversations(
        self, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        ordered = sorted(
            self._conversations.values(), key=lambda c: c.updated_at, reverse=True
        )
        return [
            c.model_copy(update={"latest_artifact": None})
            for c in ordered[offset : offset + limit]
        ]

    async def set_latest_artifact(
        self,
        conversation_id: str,
        code: str,
        pages: list[str],
        pdf_url: str | None = None,
    ) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation:
            conversation.latest_artifact = RenderedArtifact(
                code=code, pages=list(pages), pdf_url=pdf_url
            )
            conversation.updated_at = utcnow()

    async def set_title(self, conversation_id: str, title: str) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation:
            conversation.title = title
