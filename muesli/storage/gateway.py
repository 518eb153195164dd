"""Persistence gateway contract.

The gateway is the durability boundary: record CRUD keyed by id over three
record kinds, plus a content-addressable blob store for audio. Implementations
raise the errors in :mod:`muesli.errors`:

- ``NotFound`` when an id (or a referenced folder) does not exist
- ``ValidationError`` when a record violates a stored invariant
- ``VersionConflict`` when ``expected_version`` does not match
- ``GatewayError`` for anything else

Deleting a folder must cascade to its notes and synthesized ideas.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class RecordKind(str, Enum):
    FOLDER = "folders"
    NOTE = "notes"
    SYNTHESIZED_IDEA = "synthesized_ideas"


class Gateway(ABC):
    """Async persistence gateway."""

    @abstractmethod
    async def insert(self, kind: RecordKind, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return it as stored (with id and created_at)."""

    @abstractmethod
    async def get(self, kind: RecordKind, record_id: str) -> dict[str, Any]:
        """Return a stored record."""

    @abstractmethod
    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Update a record and return it as stored.

        When ``expected_version`` is given the write only happens if the
        stored version still matches.
        """

    @abstractmethod
    async def delete(self, kind: RecordKind, record_id: str) -> None:
        """Delete a record."""

    @abstractmethod
    async def select(
        self,
        kind: RecordKind,
        folder_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List records, newest first, optionally scoped to a folder."""

    @abstractmethod
    async def upload_blob(self, data: bytes, filename: str, content_type: str) -> str:
        """Store bytes and return a resolvable reference URL."""
