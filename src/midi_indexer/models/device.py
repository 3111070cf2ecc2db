"""Device entity - hardware dimension referenced by indexed tokens."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from midi_indexer.core.timezone import utc_now


class Device(SQLModel, table=True):
    """Device a MIDI token was recorded on.

    Names are unique and case-sensitive. Rows are created lazily by the record
    indexer and never mutated or deleted.
    """

    __tablename__ = "devices"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, unique=True, index=True)
    manufacturer: str = Field(default="", max_length=255)
    created_at: datetime = Field(default_factory=utc_now)
