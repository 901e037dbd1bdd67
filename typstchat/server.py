"""HTTP surface exposing chat turns and conversation history."""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .backends import get_backend
from .config import TypstChatConfig, load_config
from .constants import DEFAULT_LIST_LIMIT
from .contracts import ChatMessage, StreamEvent
from .encoder import encode_event, encode_stream
from .errors import TurnInProgressError
from .persistence import TranscriptStore, generate_conversation_id, get_store
from .renderers import get_renderer
from .replay import build_transcript, prior_turns_from_entries
from .turn import TurnEngine

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``.

    Clients either send the full ``messages`` history ending with the new
    user message, or only ``message`` and let the server derive the history
    from the stored transcript.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: Optional[List[ChatMessage]] = None
    message: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


async def _frames(
    engine: TurnEngine,
    conversation_id: str,
    prior_turns: Sequence[ChatMessage],
    user_message: str,
) -> AsyncIterator[str]:
    try:
        events = engine.run_turn(conversation_id, prior_turns, user_message)
        async with aclosing(encode_stream(events)) as frames:
            async for frame in frames:
                yield frame
    except TurnInProgressError as exc:
        # Lost the race against a turn that started after the busy check.
        logger.warning(str(exc))
        yield encode_event(StreamEvent.turn_failed(str(exc)))


def create_app(
    engine: Optional[TurnEngine] = None,
    store: Optional[TranscriptStore] = None,
    config: Optional[TypstChatConfig] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Without an explicit ``engine`` one is assembled from configuration.
    """
    if engine is None:
        config = config or load_config()
        store = store or get_store(config=config)
        engine = TurnEngine(
            store,
            get_backend(config=config),
            get_renderer(config=config),
            config.model,
        )
    else:
        store = store or engine.store

    app = FastAPI(title="typstchat")
    app.state.engine = engine
    app.state.store = store

    @app.get("/api/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/chat")
    async def chat(request: ChatRequest) -> StreamingResponse:
        conversation_id = request.conversation_id or generate_conversation_id()
        if request.message is not None:
            user_message = request.message
            if request.messages is not None:
                prior_turns = list(request.messages)
            else:
                prior_turns = prior_turns_from_entries(await store.read_all(conversation_id))
        elif request.messages and request.messages[-1].role == "user":
            user_message = request.messages[-1].content
            prior_turns = list(request.messages[:-1])
        else:
            raise HTTPException(status_code=400, detail="A user message is required")

        if not user_message.strip():
            raise HTTPException(status_code=400, detail="A user message is required")
        if engine.is_busy(conversation_id):
            raise HTTPException(
                status_code=409,
                detail=f"A turn is already in progress for conversation {conversation_id}",
            )

        logger.info(f"Chat request for conversation_id={conversation_id}")
        return StreamingResponse(
            _frames(engine, conversation_id, prior_turns, user_message),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/api/conversations")
    async def list_conversations(
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> Dict[str, Any]:
        conversations = await store.list_conversations(limit=limit, offset=offset)
        return {
            "conversations": [
                c.model_dump(mode="json", exclude={"latest_artifact"}) for c in conversations
            ]
        }

    @app.get("/api/conversations/{conversation_id}")
    async def load_conversation(conversation_id: str) -> Dict[str, Any]:
        conversation = await store.get_conversation(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")

        transcript = build_transcript(await store.read_all(conversation_id))
        artifact = transcript.artifact
        cached = conversation.latest_artifact
        # tool_result entries predate the PDF export; only the cache holds it.
        if artifact is not None and cached is not None and cached.code == artifact.code:
            artifact.pdf_url = cached.pdf_url

        return {
            "conversation": conversation.model_dump(mode="json", exclude={"latest_artifact"}),
            "messages": [m.model_dump(mode="json") for m in transcript.messages],
            "artifact": artifact.to_wire() if artifact else None,
        }

    return app
