"""Persistence gateway and its SQLite implementation."""

from muesli.storage.database import SQLiteGateway
from muesli.storage.gateway import Gateway, RecordKind

__all__ = ["Gateway", "RecordKind", "SQLiteGateway"]
