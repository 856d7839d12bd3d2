#!/usr/bin/env python3
"""Inspect a conversation's compacted memory.

Prints token stats against the budget, the state pointer, and every
committed memory entry. Read-only: never enqueues or commits.

Usage:
    python scripts/memory_status.py --conversation conv_123
    python scripts/memory_status.py --conversation conv_123 --context
    python scripts/memory_status.py --conversation conv_123 --db data/other.db
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from recall.app import configure_logging
from recall.config import settings
from recall.memory.context import ContextAssembler
from recall.memory.store import MemoryStore
from recall.memory.tokens import TokenAccountant
from recall.messages.store import SQLiteMessageStore


def banner(msg: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {msg}")
    print(f"{'=' * 60}")


async def main(conversation_id: str, db_path: Path, show_context: bool) -> None:
    messages = SQLiteMessageStore(db_path=db_path)
    memory = MemoryStore(db_path=db_path)
    accountant = TokenAccountant(messages, memory)

    banner(f"Memory status: {conversation_id}")
    print(f"Database: {db_path}")

    stats = await accountant.compute_stats(conversation_id)
    print(f"\nCompressed tokens: {stats.compressed_tokens} (ceiling {accountant.compressed_token_ceiling})")
    print(f"Recent tokens:     {stats.recent_tokens} ({stats.recent_message_count} messages)")
    print(f"Total tokens:      {stats.total_tokens} / {accountant.max_context_tokens}")

    state = await memory.get_state(conversation_id)
    print(f"\nLast compacted at: {state.last_compacted_at or 'never'}")
    print(f"Latest entry id:   {state.latest_entry_id or '-'}")

    entries = await memory.list_entries(conversation_id)
    banner(f"{len(entries)} memory entr{'y' if len(entries) == 1 else 'ies'}")
    for entry in entries:
        print(
            f"\n[{entry.start_message_sequence}-{entry.end_message_sequence}] "
            f"{entry.message_count} messages, created {entry.created_at}"
        )
        print(f"  {entry.summary}")
        for event in entry.key_events:
            people = ", ".join(sorted(event.participants))
            print(f"  - ({event.importance}) {event.description} [{people}]")

    if show_context:
        banner("Assembled context")
        assembler = ContextAssembler(messages, memory)
        print(await assembler.build_context(conversation_id) or "(empty)")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inspect compacted conversation memory")
    parser.add_argument("--conversation", required=True, help="Conversation ID")
    parser.add_argument("--context", action="store_true", help="Also print the assembled context")
    parser.add_argument(
        "--db",
        type=Path,
        default=settings.database_path,
        help=f"SQLite database path (default: {settings.database_path})",
    )
    args = parser.parse_args()
    configure_logging()
    asyncio.run(main(args.conversation, args.db, args.context))
