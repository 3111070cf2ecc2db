"""MidiToken entity - indexed on-chain token with its resolved metadata."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from midi_indexer.core.timezone import utc_now


class MidiToken(SQLModel, table=True):
    """MidiToken is the record of a successfully indexed token.

    The primary key is the on-chain token id. A row exists if and only if indexing
    for that id completed at least once.
    """

    __tablename__ = "midi"  # type: ignore[assignment]

    id: int = Field(primary_key=True)
    token_metadata: dict = Field(sa_column=Column(JSON, nullable=False))
    device_id: int = Field(foreign_key="devices.id", index=True)
    created_by: str = Field(max_length=42)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: int) -> int:
        """Token ids start at 1."""
        if v <= 0:
            raise ValueError("Token id must be positive")
        return v
