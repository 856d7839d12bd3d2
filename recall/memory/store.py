"""MemoryStore — aiosqlite persistence for the append-only memory entry chain."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from recall.config import settings
from recall.errors import ChainConflictError, PersistenceFailure
from recall.memory.models import ConversationMemoryState, MemoryEntry

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_ENTRIES = """
CREATE TABLE IF NOT EXISTS memory_entries (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    key_events TEXT NOT NULL,
    start_message_sequence INTEGER NOT NULL,
    end_message_sequence INTEGER NOT NULL,
    message_count INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (conversation_id, start_message_sequence)
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_memory_entries_conversation_created"
    " ON memory_entries (conversation_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_memory_entries_conversation_end"
    " ON memory_entries (conversation_id, end_message_sequence)",
)

_CREATE_STATE = """
CREATE TABLE IF NOT EXISTS conversation_memory_state (
    conversation_id TEXT PRIMARY KEY,
    last_compacted_at TEXT,
    latest_entry_id TEXT REFERENCES memory_entries (id)
)
"""

_ENTRY_COLUMNS = (
    "id, conversation_id, summary, key_events, start_message_sequence,"
    " end_message_sequence, message_count, created_at"
)


class MemoryStore:
    """Persists memory entries and per-conversation memory state in SQLite.

    Entries are only ever inserted. ``commit`` writes the entry and advances
    the conversation state in one transaction, so readers never see one
    without the other. Pass an explicit *db_path* for test isolation.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly in commit().
        db = await aiosqlite.connect(str(self._db_path), isolation_level=None)
        try:
            await db.execute("PRAGMA busy_timeout=5000")
            if not self._initialised:
                await db.execute(_CREATE_ENTRIES)
                for stmt in _CREATE_INDEXES:
                    await db.execute(stmt)
                await db.execute(_CREATE_STATE)
                self._initialised = True
        except Exception:
            await db.close()
            raise
        return db

    @staticmethod
    async def _latest(db: aiosqlite.Connection, conversation_id: str) -> MemoryEntry | None:
        cursor = await db.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM memory_entries WHERE conversation_id = ?"
            " ORDER BY end_message_sequence DESC LIMIT 1",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return MemoryEntry.from_row(row) if row else None

    # -- Write -----------------------------------------------------------------

    async def commit(self, entry: MemoryEntry) -> MemoryEntry:
        """Insert *entry* and advance the conversation's memory state atomically.

        Raises:
            ChainConflictError: *entry* does not start right after the latest
                committed entry. Nothing is written.
            PersistenceFailure: the transaction failed. Nothing is written.
        """
        try:
            db = await self._connect()
        except Exception as exc:
            msg = f"Could not open memory store for {entry.conversation_id}"
            raise PersistenceFailure(msg) from exc

        try:
            try:
                await db.execute("BEGIN IMMEDIATE")
            except Exception as exc:
                msg = f"Could not lock memory store for {entry.conversation_id}"
                raise PersistenceFailure(msg) from exc
            try:
                latest = await self._latest(db, entry.conversation_id)
                if latest is not None and entry.start_message_sequence != latest.end_message_sequence + 1:
                    msg = (
                        f"Entry for {entry.conversation_id} starts at "
                        f"{entry.start_message_sequence}, expected {latest.end_message_sequence + 1}"
                    )
                    raise ChainConflictError(msg)

                await db.execute(
                    f"INSERT INTO memory_entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    entry.to_row(),
                )
                await db.execute(
                    """
                    INSERT INTO conversation_memory_state
                        (conversation_id, last_compacted_at, latest_entry_id)
                    VALUES (?, ?, ?)
                    ON CONFLICT (conversation_id) DO UPDATE SET
                        last_compacted_at = excluded.last_compacted_at,
                        latest_entry_id = excluded.latest_entry_id
                    """,
                    (entry.conversation_id, entry.created_at, entry.id),
                )
                await db.execute("COMMIT")
            except ChainConflictError:
                await db.execute("ROLLBACK")
                raise
            except Exception as exc:
                await db.execute("ROLLBACK")
                msg = f"Failed to commit memory entry for {entry.conversation_id}"
                raise PersistenceFailure(msg) from exc
        finally:
            await db.close()

        logger.info(
            "Committed memory entry %s for %s (messages %d-%d)",
            entry.id,
            entry.conversation_id,
            entry.start_message_sequence,
            entry.end_message_sequence,
        )
        return entry

    # -- Read ------------------------------------------------------------------

    async def get_latest(self, conversation_id: str) -> MemoryEntry | None:
        """Return the most recent committed entry, or None."""
        db = await self._connect()
        try:
            return await self._latest(db, conversation_id)
        finally:
            await db.close()

    async def list_entries(self, conversation_id: str) -> list[MemoryEntry]:
        """Return the whole entry chain, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM memory_entries WHERE conversation_id = ?"
                " ORDER BY start_message_sequence",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [MemoryEntry.from_row(row) for row in rows]
        finally:
            await db.close()

    async def get_state(self, conversation_id: str) -> ConversationMemoryState:
        """Return the conversation's memory state (empty if never compacted)."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT conversation_id, last_compacted_at, latest_entry_id"
                " FROM conversation_memory_state WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return ConversationMemoryState(conversation_id=conversation_id)
            return ConversationMemoryState(
                conversation_id=row[0],
                last_compacted_at=row[1],
                latest_entry_id=row[2],
            )
        finally:
            await db.close()
