"""QueueEntry entity - durable record of a failed indexing attempt."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from midi_indexer.core.timezone import utc_now


class QueueEntry(SQLModel, table=True):
    """QueueEntry tracks a token awaiting another indexing attempt.

    Keyed by token id, so there is at most one live entry per token. ``attempts``
    counts failed retries (0 right after the first failure). The row is deleted
    when indexing for the token succeeds.
    """

    __tablename__ = "queue"  # type: ignore[assignment]

    id: int = Field(primary_key=True)
    operator: str = Field(max_length=42)
    error: str = Field(default="", max_length=1000)
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: datetime = Field(default_factory=utc_now, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
