"""
Route entity for Golink Platform.

A Route maps a short name to a destination URL. The name itself is the storage
key and is not part of the record. Routes are persisted as a small JSON document:

    {"url": "http://example.com", "time": "2020-09-29T16:23:56.718910-06:00"}

The field names `url` / `time` are the stable wire format; in Python the fields are
exposed as `destination` and `created_at`.

LLM Prompt Example:
    "Show how a frozen pydantic model gives a schema-stable JSON codec whose
    validation errors can be mapped onto a storage-level DecodeError."
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Route(BaseModel):
    """Immutable record {destination URL, creation timestamp}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    destination: str = Field(alias="url", min_length=1)
    created_at: datetime = Field(alias="time")

    @classmethod
    def create(cls, destination: str, created_at: Optional[datetime] = None) -> "Route":
        """Build a Route stamped with `created_at` (defaults to now, UTC)."""
        return cls(destination=destination, created_at=created_at or datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Encode using the wire field names."""
        return self.model_dump_json(by_alias=True)

    def to_dict(self) -> dict:
        """Wire-format dict (ISO timestamp), as used by the HTTP layer and Firestore."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "Route":
        """Decode a JSON document. Raises pydantic.ValidationError on bad input."""
        return cls.model_validate_json(raw)

    @classmethod
    def from_dict(cls, data: dict) -> "Route":
        return cls.model_validate(data)
