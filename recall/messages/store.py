"""Message stores: the append-only conversation log the engine reads from.

The engine only consumes the ``MessageStore`` protocol. Two implementations
ship here: an in-memory store (tests, single-process embedding) and an
aiosqlite-backed store.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import aiosqlite

from recall.config import settings
from recall.messages.models import Message

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@runtime_checkable
class MessageStore(Protocol):
    """Read interface the memory engine needs from the message log."""

    async def list_messages_after(self, conversation_id: str, sequence: int) -> list[Message]:
        """Return messages with ``sequence`` strictly greater than *sequence*, oldest first."""
        ...

    async def count_recent(self, conversation_id: str, limit: int) -> int:
        """Return how many messages the most recent *limit* holds (``min(limit, total)``)."""
        ...


def _now() -> str:
    return datetime.now(UTC).isoformat()


# -- In-memory -----------------------------------------------------------------


class InMemoryMessageStore:
    """Message log kept in a dict of per-conversation lists."""

    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = {}
        self._lock = asyncio.Lock()

    async def append(self, conversation_id: str, sender_label: str, content: str) -> Message:
        """Append a message, assigning the next sequence number."""
        async with self._lock:
            log = self._messages.setdefault(conversation_id, [])
            message = Message(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                sequence=len(log) + 1,
                sender_label=sender_label,
                content=content,
                created_at=_now(),
            )
            log.append(message)
            return message

    async def list_messages_after(self, conversation_id: str, sequence: int) -> list[Message]:
        return [m for m in self._messages.get(conversation_id, []) if m.sequence > sequence]

    async def count_recent(self, conversation_id: str, limit: int) -> int:
        return min(max(limit, 0), len(self._messages.get(conversation_id, [])))


# -- SQLite --------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    sender_label TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (conversation_id, sequence)
)
"""

_COLUMNS = "id, conversation_id, sequence, sender_label, content, created_at"


def _message_from_row(row: tuple) -> Message:
    return Message(
        id=row[0],
        conversation_id=row[1],
        sequence=row[2],
        sender_label=row[3],
        content=row[4],
        created_at=row[5],
    )


class SQLiteMessageStore:
    """Persists conversation messages in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path), isolation_level=None)
        try:
            await db.execute("PRAGMA busy_timeout=5000")
            if not self._initialised:
                await db.execute(_CREATE_TABLE)
                self._initialised = True
        except Exception:
            await db.close()
            raise
        return db

    async def append(self, conversation_id: str, sender_label: str, content: str) -> Message:
        """Append a message, assigning the next sequence number."""
        db = await self._connect()
        try:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT COALESCE(MAX(sequence), 0) FROM messages WHERE conversation_id = ?",
                    (conversation_id,),
                )
                row = await cursor.fetchone()
                message = Message(
                    id=uuid.uuid4().hex,
                    conversation_id=conversation_id,
                    sequence=row[0] + 1,
                    sender_label=sender_label,
                    content=content,
                    created_at=_now(),
                )
                await db.execute(
                    f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        message.id,
                        message.conversation_id,
                        message.sequence,
                        message.sender_label,
                        message.content,
                        message.created_at,
                    ),
                )
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise
            return message
        finally:
            await db.close()

    async def list_messages_after(self, conversation_id: str, sequence: int) -> list[Message]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM messages"
                " WHERE conversation_id = ? AND sequence > ? ORDER BY sequence",
                (conversation_id, sequence),
            )
            rows = await cursor.fetchall()
            return [_message_from_row(row) for row in rows]
        finally:
            await db.close()

    async def count_recent(self, conversation_id: str, limit: int) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return min(max(limit, 0), row[0])
        finally:
            await db.close()
