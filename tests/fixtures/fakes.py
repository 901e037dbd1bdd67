"""Test doubles for the render collaborator and transcript store."""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

from typstchat.errors import PersistenceError
from typstchat.persistence import EntrySource, InMemoryTranscriptStore, TranscriptEntry
from typstchat.renderers import Renderer, RenderRequest, RenderResult


class FakeRenderer(Renderer):
    """Renderer returning canned pages, errors or a PDF blob.

    When ``gate`` is given, page renders wait for it to be set.
    """

    def __init__(
        self,
        pages: Sequence[str] = ("cGFnZS0x",),
        error: Optional[str] = None,
        pdf: str = "JVBERi0xLjc=",
        pdf_error: Optional[str] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.pages = list(pages)
        self.error = error
        self.pdf = pdf
        self.pdf_error = pdf_error
        self.gate = gate
        self.requests: List[RenderRequest] = []

    async def render(self, request: RenderRequest) -> RenderResult:
        self.requests.append(request)
        if not request.code.strip():
            return RenderResult.failure("No Typst code provided")
        if request.format == "pdf":
            if self.pdf_error:
                return RenderResult.failure(self.pdf_error)
            return RenderResult(success=True, data=self.pdf, mime_type="application/pdf")
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            return RenderResult.failure(self.error)
        return RenderResult(success=True, pages=list(self.pages), mime_type="image/png")


class FailingAssistantStore(InMemoryTranscriptStore):
    """In-memory store that refuses to persist assistant entries."""

    async def append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        if EntrySource(source) is EntrySource.ASSISTANT:
            raise PersistenceError("disk full")
        return await super().append(conversation_id, source, payload)
