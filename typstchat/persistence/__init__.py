"""Transcript stores for typstchat conversations.

Three backends keep the append-only conversation log and the cached latest
artifact, chosen by the scheme of the configured database URL:

* no URL: :class:`InMemoryTranscriptStore`, lost on restart
* ``sqlite://<path>``: :class:`SQLiteTranscriptStore`, a local file
  (``sqlite://`` alone opens an in-memory database)
* ``postgres://`` or ``postgresql://``: :class:`PostgresTranscriptStore`,
  available when asyncpg is installed

The URL comes from ``TYPSTCHAT_DATABASE_URL``, ``DATABASE_URL`` or the
``database_url`` key of the YAML config, in that order.
"""

from __future__ import annotations

from typing import Optional

from ..config import TypstChatConfig, load_config
from .ids import generate_conversation_id
from .inmemory import InMemoryTranscriptStore
from .models import Conversation, EntrySource, TranscriptEntry
from .repository import TranscriptStore
from .sqlite import SQLiteTranscriptStore

try:  # pragma: no cover - asyncpg is optional at runtime
    from .postgres import PostgresTranscriptStore
except ImportError:  # pragma: no cover
    PostgresTranscriptStore = None  # type: ignore

POSTGRES_SCHEMES = ("postgres", "postgresql")

# Shared by the server and CLI commands of one process.
_store_instance: TranscriptStore | None = None


def _open_store(database_url: Optional[str]) -> TranscriptStore:
    if not database_url:
        return InMemoryTranscriptStore()

    scheme, _, location = database_url.partition("://")
    if scheme == "sqlite":
        return SQLiteTranscriptStore(location or ":memory:")
    if scheme in POSTGRES_SCHEMES:
        if PostgresTranscriptStore is None:
            raise RuntimeError("PostgreSQL transcripts need asyncpg installed")
        return PostgresTranscriptStore(database_url)
    raise ValueError(f"Unsupported transcript store URL: {database_url}")


def get_store(
    database_url: Optional[str] = None, config: Optional[TypstChatConfig] = None
) -> TranscriptStore:
    """Return the transcript store for this process.

    Called without arguments it reuses the store opened last. An explicit
    ``database_url`` or ``config`` always opens a fresh store and makes it the
    shared one.
    """
    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    if database_url is None:
        database_url = (config or load_config()).database_url
    _store_instance = _open_store(database_url)
    return _store_instance


__all__ = [
    "Conversation",
    "EntrySource",
    "TranscriptEntry",
    "TranscriptStore",
    "InMemoryTranscriptStore",
    "SQLiteTranscriptStore",
    "PostgresTranscriptStore",
    "generate_conversation_id",
    "get_store",
]
