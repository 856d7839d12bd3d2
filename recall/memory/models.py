"""Data models for compacted conversation memory."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)

Importance = Literal["high", "medium", "low"]


class KeyEvent(BaseModel):
    """One notable event extracted from a batch of messages."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    participants: set[str] = Field(default_factory=set)
    importance: Importance
    timestamp: str | None = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "description must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("importance", mode="before")
    @classmethod
    def _normalize_importance(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_serializer("participants")
    def _serialize_participants(self, participants: set[str]) -> list[str]:
        return sorted(participants)


class SummaryResult(BaseModel):
    """Validated summarizer output: the fixed ``summary + key_events`` schema."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(min_length=1)
    key_events: list[KeyEvent] = Field(default_factory=list, alias="keyEvents")

    @field_validator("summary")
    @classmethod
    def _strip_summary(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "summary must not be blank"
            raise ValueError(msg)
        return value


class MemoryEntry(BaseModel):
    """One committed compaction result.

    Covers the inclusive message range ``start_message_sequence`` to
    ``end_message_sequence``. Never mutated after creation.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    summary: str
    key_events: list[KeyEvent] = Field(default_factory=list)
    start_message_sequence: int = Field(ge=1)
    end_message_sequence: int = Field(ge=1)
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @model_validator(mode="after")
    def _check_range(self) -> MemoryEntry:
        if self.end_message_sequence < self.start_message_sequence:
            msg = (
                f"end_message_sequence ({self.end_message_sequence}) precedes "
                f"start_message_sequence ({self.start_message_sequence})"
            )
            raise ValueError(msg)
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def message_count(self) -> int:
        return self.end_message_sequence - self.start_message_sequence + 1

    # -- Serialization ---------------------------------------------------------

    def key_events_json(self) -> str:
        return json.dumps([e.model_dump() for e in self.key_events])

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``memory_entries`` column order."""
        return (
            self.id,
            self.conversation_id,
            self.summary,
            self.key_events_json(),
            self.start_message_sequence,
            self.end_message_sequence,
            self.message_count,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> MemoryEntry:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            conversation_id=row[1],
            summary=row[2],
            key_events=[KeyEvent.model_validate(e) for e in json.loads(row[3])],
            start_message_sequence=row[4],
            end_message_sequence=row[5],
            created_at=row[7],
        )


class ConversationMemoryState(BaseModel):
    """Per-conversation pointer to the latest committed entry."""

    conversation_id: str
    last_compacted_at: str | None = None
    latest_entry_id: str | None = None


@dataclass(frozen=True)
class TokenStats:
    """Token split between compacted history and the raw unconsumed suffix."""

    compressed_tokens: int
    recent_tokens: int
    recent_message_count: int

    @property
    def total_tokens(self) -> int:
        return self.compressed_tokens + self.recent_tokens


class CompactionState(str, Enum):
    """Per-conversation compaction lifecycle."""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


def make_entry_id() -> str:
    """Generate a new memory entry ID."""
    return uuid.uuid4().hex
