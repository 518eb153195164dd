"""Entity snapshots held by the store.

Snapshots are frozen: the store swaps them out instead of mutating them, so a
value handed to the UI can never write back into the cache.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from muesli.errors import ValidationError


class NoteType(str, Enum):
    TEXT = "text"
    RECORDING = "recording"

    @classmethod
    def parse(cls, value: "str | NoteType") -> "NoteType":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown note type: {value!r}") from None


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_tags(value: Any) -> frozenset[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = json.loads(value)
    return frozenset(str(t) for t in value)


@dataclass(frozen=True)
class Folder:
    """A named collection of notes."""

    id: str
    name: str
    description: str
    created_at: datetime
    tags: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Folder":
        return cls(
            id=record["id"],
            name=record["name"],
            description=record.get("description") or "",
            created_at=_parse_timestamp(record["created_at"]),
            tags=_parse_tags(record.get("tags")),
        )


@dataclass(frozen=True)
class Note:
    """A single captured idea: free text, or a voice recording with caption."""

    id: str
    folder_id: str
    content: str
    type: NoteType
    created_at: datetime
    version: int = 1
    file_url: str | None = None
    transcription: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Note":
        return cls(
            id=record["id"],
            folder_id=record["folder_id"],
            content=record["content"],
            type=NoteType(record["type"]),
            created_at=_parse_timestamp(record["created_at"]),
            version=int(record.get("version") or 1),
            file_url=record.get("file_url"),
            transcription=record.get("transcription"),
            tags=_parse_tags(record.get("tags")),
        )

    @property
    def is_recording(self) -> bool:
        return self.type is NoteType.RECORDING


@dataclass(frozen=True)
class SynthesizedIdea:
    """AI-generated markdown synthesis of a folder's notes."""

    id: str
    folder_id: str
    content: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SynthesizedIdea":
        return cls(
            id=record["id"],
            folder_id=record["folder_id"],
            content=record["content"],
            created_at=_parse_timestamp(record["created_at"]),
        )
