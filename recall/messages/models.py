"""Conversation message model."""

from pydantic import BaseModel, ConfigDict


class Message(BaseModel):
    """A single conversation message, as owned by the message store.

    ``sequence`` increases monotonically per conversation, starting at 1.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    sequence: int
    sender_label: str
    content: str
    created_at: str
