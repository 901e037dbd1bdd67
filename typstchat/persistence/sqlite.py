"""SQLite implementation of the transcript store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import RenderedArtifact
from ..errors import PersistenceError
from .models import Conversation, EntrySource, TranscriptEntry, utcnow
from .repository import TranscriptStore


class SQLiteTranscriptStore(TranscriptStore):
    """Persist conversation transcripts using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._guard = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                title TEXT,
                typst_code TEXT,
                typst_pages TEXT,
                pdf_url TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                source TEXT NOT NULL CHECK (source IN ('user', 'assistant', 'tool_call', 'tool_result')),
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)"
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)")
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _run(self, fn, *args: Any) -> Any:
        with self._guard:
            try:
                return fn(*args)
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(f"SQLite store failure: {exc}") from exc

    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        now = utcnow().isoformat()
        cur = self._conn.cursor()
        cur.execute(
            "INSERT OR IGNORE INTO conversations (id, created_at, updated_at) VALUES (?, ?, ?)",
            (conversation_id, now, now),
        )
        cur.execute(
            "INSERT INTO messages (conversation_id, source, content, timestamp) VALUES (?, ?, ?, ?)",
            (conversation_id, source.value, json.dumps(payload), now),
        )
        entry_id = cur.lastrowid
        cur.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id)
        )
        self._conn.commit()
        return TranscriptEntry(
            id=entry_id,
            conversation_id=conversation_id,
            source=source,
            payload=payload,
            timestamp=datetime.fromisoformat(now),
        )

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row, with_artifact: bool) -> Conversation:
        artifact = None
        if with_artifact and row["typst_code"] is not None and row["typst_pages"] is not None:
            artifact = RenderedArtifact(
                code=row["typst_code"],
                pages=json.loads(row["typst_pages"]),
                pdf_url=row["pdf_url"],
            )
        return Conversation(
            id=row["id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            title=row["title"],
            latest_artifact=artifact,
        )

    # ------------------------------------------------------------------
    # Store API
    async def append(
        self, conversation_id: str, source: EntrySource, payload: dict[str, Any]
    ) -> TranscriptEntry:
        return await asyncio.to_thread(
            self._run, self._append, conversation_id, EntrySource(source), dict(payload)
        )

    async def read_all(self, conversation_id: str) -> list[TranscriptEntry]:
        rows = await asyncio.to_thread(
            self._run,
            self._fetchall,
            "SELECT id, conversation_id, source, content, timestamp FROM messages WHERE conversation_id = ? ORDER BY timestamp ASC, id ASC",
            conversation_id,
        )
        return [
            TranscriptEntry(
                id=r["id"],
                conversation_id=r["conversation_id"],
                source=EntrySource(r["source"]),
                payload=json.loads(r["content"]),
                timestamp=datetime.fromisoformat(r["timestamp"]),
            )
            for r in rows
        ]

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await asyncio.to_thread(
            self._run,
            self._fetchone,
            "SELECT * FROM conversations WHERE id = ?",
            conversation_id,
        )
        if not row:
            return None
        return self._row_to_conversation(row, with_artifact=True)

    async def list_conversations(
        self, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        rows = await asyncio.to_thread(
            self._run,
            self._fetchall,
            "SELECT * FROM conversations ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            limit,
            offset,
        )
        return [self._row_to_conversation(row, with_artifact=False) for row in rows]

    async def set_latest_artifact(
        self,
        conversation_id: str,
        code: str,
        pages: list[str],
        pdf_url: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._run,
            self._execute,
            "UPDATE conversations SET typst_code = ?, typst_pages = ?, pdf_url = ?, updated_at = ? WHERE id = ?",
            code,
            json.dumps(pages),
            pdf_url,
            utcnow().isoformat(),
            conversation_id,
        )

    async def set_title(self, conversation_id: str, title: str) -> None:
        await asyncio.to_thread(
            self._run,
            self._execute,
            "UPDATE conversations SET title = ? WHERE id = ?",
            title,
            conversation_id,
        )

    def close(self) -> None:
        self._conn.close()
