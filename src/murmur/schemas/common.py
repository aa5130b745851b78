"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from murmur.db.time import ensure_utc


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python.

    Both spellings are accepted on input so HTTP clients may post either.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """Dump as a JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class UserSummary(CamelModel):
    """Minimal identity embedded in messages and friendship payloads."""

    id: str
    username: str


class PresenceStatus(CamelModel):
    """Payload of ``user-status-update`` events."""

    user_id: str
    is_online: bool
    last_seen: datetime

    @field_serializer("last_seen")
    def serialize_last_seen(self, value: datetime) -> datetime:
        """Report timestamps in UTC."""
        return ensure_utc(value)  # type: ignore[return-value]
