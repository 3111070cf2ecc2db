"""DeadLetter entity - token ids the reconciliation sweep could not attribute."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from midi_indexer.core.timezone import utc_now


class DeadLetter(SQLModel, table=True):
    """DeadLetter holds ids with no matching historical mint event.

    Kept apart from the retry queue so the sweep revisits them on a slower
    cadence instead of rescanning the mint log for them on every run.
    """

    __tablename__ = "dead_letters"  # type: ignore[assignment]

    id: int = Field(primary_key=True)
    reason: str = Field(max_length=255)
    sightings: int = Field(default=1, ge=1)
    first_seen_at: datetime = Field(default_factory=utc_now)
    last_seen_at: datetime = Field(default_factory=utc_now, index=True)
