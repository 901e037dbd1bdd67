"""PostgreSQL implementation of the transcript store."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

from ..contracts import RenderedArtifact
from ..errors import PersistenceError
from .models import Conversation, EntrySource, TranscriptEntry, utcnow
from .repository import TranscriptStore


def _json_value(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresTranscriptStore(TranscriptStore):
    """Persist conversation transcripts using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False
        self._schema_lock = asyncio.Lock()

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            # CREATE TABLE IF NOT EXISTS is not safe to run concurrently.
            async with self._schema_lock:
                if not self._initialized:
                    try:
                        await self._ensure_schema(conn)
                    except BaseException:
                        await conn.close()
                        raise
                    self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceError(f"PostgreSQL connection failed: {exc}") from exc
        try:
            yield conn
        except asyncpg.PostgresError as exc:
            raise PersistenceError(f"PostgreSQL store failure: {exc}") from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                title TEXT,
                typst_code TEXT,
                typst_pages JSONB,
                pdf_url TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id BIGSERIAL PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES conversations(id),
                source TEXT NOT NULL CHECK (source IN ('user', 'assistant', 'tool_call', 'tool_result')),
                content JSONB NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, timestamp)"
        )

    @staticmethod
    def _record_to_conversation(row: asyncpg.Record, with_artifact: bool) -> Conversation:
        artifact = None
        if with_artifact and row["typst_code"] is not None and row["typst_pages"] is not None:
            artifact = RenderedArtifact(
                code=row["typst_code"],
                pages=_json_value(row["typst_pages"]),
                pdf_url=row["pdf_url"],
            )
        return Conversation(
            id=row["id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            title=row["title"],
            latest_artifact=artifact,
        )

    # ------------------------------------------------------------------
    async def append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        source = EntrySource(source)
        now = utcnow()
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "INSERT INTO conversations (id, created_at, updated_at) VALUES ($1, $2, $2) ON CONFLICT (id) DO NOTHING",
                    conversation_id,
                    now,
                )
                entry_id = await conn.fetchval(
                    "INSERT INTO messages (conversation_id, source, content, timestamp) VALUES ($1, $2, $3, $4) RETURNING id",
                    conversation_id,
                    source.value,
                    json.dumps(payload),
                    now,
                )
                await conn.execute(
                    "UPDATE conversations SET updated_at = $1 WHERE id = $2",
                    now,
                    conversation_id,
                )
        return TranscriptEntry(
            id=entry_id,
            conversation_id=conversation_id,
            source=source,
            payload=dict(payload),
            timestamp=now,
        )

    async def read_all(self, conversation_id: str) -> list[TranscriptEntry]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT id, conversation_id, source, content, timestamp FROM messages WHERE conversation_id = $1 ORDER BY timestamp, id",
                conversation_id,
            )
        return [
            TranscriptEntry(
                id=r["id"],
                conversation_id=r["conversation_id"],
                source=EntrySource(r["source"]),
                payload=_json_value(r["content"]),
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM conversations WHERE id = $1", conversation_id
            )
        if not row:
            return None
        return self._record_to_conversation(row, with_artifact=True)

    async def list_conversations(
        self, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM conversations ORDER BY updated_at DESC LIMIT $1 OFFSET $2",
                limit,
                offset,
            )
        return [self._record_to_conversation(r, with_artifact=False) for r in rows]

    async def set_latest_artifact(
        self,
        conversation_id: str,
        code: str,
        pages: list[str],
        pdf_url: str | None = None,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE conversations SET typst_code = $1, typst_pages = $2, pdf_url = $3, updated_at = $4 WHERE id = $5",
                code,
                json.dumps(pages),
                pdf_url,
                utcnow(),
                conversation_id,
            )

    async def set_title(self, conversation_id: str, title: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE conversations SET title = $1 WHERE id = $2", title, conversation_id
            )
