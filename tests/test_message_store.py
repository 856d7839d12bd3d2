"""Tests for the in-memory and SQLite message stores."""

import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from recall.messages.store import InMemoryMessageStore, MessageStore, SQLiteMessageStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryMessageStore()
    return SQLiteMessageStore(db_path=tmp_path / "messages.db")


def test_implementations_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(InMemoryMessageStore(), MessageStore)
    assert isinstance(SQLiteMessageStore(db_path=tmp_path / "m.db"), MessageStore)


async def test_append_assigns_monotonic_sequence(store) -> None:
    first = await store.append("conv_1", "Alice", "hello")
    second = await store.append("conv_1", "Bob", "hi")
    assert (first.sequence, second.sequence) == (1, 2)
    assert second.conversation_id == "conv_1"
    assert second.sender_label == "Bob"


async def test_sequences_are_per_conversation(store) -> None:
    await store.append("conv_1", "Alice", "a")
    await store.append("conv_1", "Alice", "b")
    other = await store.append("conv_2", "Bob", "c")
    assert other.sequence == 1


async def test_list_messages_after(store) -> None:
    for i in range(1, 6):
        await store.append("conv_1", "Alice", f"m{i}")

    after = await store.list_messages_after("conv_1", 2)
    assert [m.sequence for m in after] == [3, 4, 5]
    assert [m.content for m in after] == ["m3", "m4", "m5"]


async def test_list_messages_after_is_restartable(store) -> None:
    for i in range(3):
        await store.append("conv_1", "Alice", f"m{i}")
    assert await store.list_messages_after("conv_1", 0) == await store.list_messages_after("conv_1", 0)


async def test_list_messages_unknown_conversation(store) -> None:
    assert await store.list_messages_after("nope", 0) == []


async def test_count_recent(store) -> None:
    for i in range(4):
        await store.append("conv_1", "Alice", f"m{i}")
    assert await store.count_recent("conv_1", 10) == 4
    assert await store.count_recent("conv_1", 3) == 3
    assert await store.count_recent("conv_1", 0) == 0
    assert await store.count_recent("nope", 10) == 0


async def test_sqlite_failed_setup_closes_connection(tmp_path: Path) -> None:
    db = AsyncMock()
    db.execute.side_effect = sqlite3.OperationalError("disk I/O error")
    store = SQLiteMessageStore(db_path=tmp_path / "messages.db")

    with (
        patch("recall.messages.store.aiosqlite.connect", AsyncMock(return_value=db)),
        pytest.raises(sqlite3.OperationalError),
    ):
        await store.list_messages_after("conv_1", 0)

    db.close.assert_awaited_once()
