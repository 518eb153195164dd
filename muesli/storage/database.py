import asyncio
import hashlib
import json
import logging
import os
import sqlite3
import uuid
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from muesli.constants import get_now
from muesli.errors import GatewayError, NotFound, ValidationError, VersionConflict
from muesli.storage.gateway import Gateway, RecordKind

logger = logging.getLogger("muesli")

T = TypeVar("T")

# Columns callers may write, per record kind. id and created_at are assigned here.
WRITABLE_COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.FOLDER: ("name", "description", "tags"),
    RecordKind.NOTE: (
        "folder_id",
        "content",
        "type",
        "file_url",
        "transcription",
        "tags",
        "version",
    ),
    RecordKind.SYNTHESIZED_IDEA: ("folder_id", "content"),
}

JSON_COLUMNS = ("tags",)


class SQLiteGateway(Gateway):
    """SQLite-backed gateway with an on-disk blob directory.

    All database work runs on a single worker thread, so one connection is
    reused and the event loop never blocks on sqlite.
    """

    def __init__(self, db_path: str | Path | None = None, blob_dir: str | Path | None = None) -> None:
        data_dir = os.path.expanduser("~/.local/share/muesli")
        if not db_path:
            os.makedirs(data_dir, exist_ok=True)
            db_path = os.path.join(data_dir, "muesli.db")
        if not blob_dir:
            blob_dir = os.path.join(data_dir, "recordings")

        self.db_path = str(db_path)
        self.blob_dir = Path(blob_dir)
        self._conn_obj: sqlite3.Connection | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="muesli-db")
        self._executor.submit(self._init_db).result()

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn_obj is None:
            self._conn_obj = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,
            )
            self._conn_obj.row_factory = sqlite3.Row
            self._conn_obj.execute("PRAGMA foreign_keys = ON")
        return self._conn_obj

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database operations with auto-commit."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(fn, *args))

    def close(self) -> None:
        """Close the connection and stop the worker thread."""

        def _close() -> None:
            if self._conn_obj is not None:
                self._conn_obj.close()
                self._conn_obj = None

        self._executor.submit(_close).result()
        self._executor.shutdown(wait=True)

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS folders (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                    description TEXT NOT NULL DEFAULT '',
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    folder_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    type TEXT NOT NULL CHECK (type IN ('text', 'recording')),
                    file_url TEXT,
                    transcription TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    CHECK ((type = 'recording') = (file_url IS NOT NULL)),
                    FOREIGN KEY(folder_id) REFERENCES folders(id) ON DELETE CASCADE
                )
            """)

            # Check for missing columns (migration for existing DBs)
            cursor = conn.execute("PRAGMA table_info(notes)")
            columns = [row[1] for row in cursor.fetchall()]
            if "tags" not in columns:
                conn.execute("ALTER TABLE notes ADD COLUMN tags TEXT NOT NULL DEFAULT '[]'")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS synthesized_ideas (
                    id TEXT PRIMARY KEY,
                    folder_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    FOREIGN KEY(folder_id) REFERENCES folders(id) ON DELETE CASCADE
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_notes_folder ON notes(folder_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_synthesized_ideas_folder "
                "ON synthesized_ideas(folder_id)"
            )

    # ==================== Record helpers ====================

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
        record = dict(row)
        for column in JSON_COLUMNS:
            if column in record and isinstance(record[column], str):
                record[column] = json.loads(record[column])
        return record

    @staticmethod
    def _encode(kind: RecordKind, fields: dict[str, Any]) -> dict[str, Any]:
        allowed = WRITABLE_COLUMNS[kind]
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValidationError(f"Unknown {kind.value} fields: {', '.join(sorted(unknown))}")
        encoded = dict(fields)
        for column in JSON_COLUMNS:
            if column in encoded:
                encoded[column] = json.dumps(sorted(encoded[column] or []))
        return encoded

    @staticmethod
    def _translate_integrity_error(kind: RecordKind, e: sqlite3.IntegrityError) -> Exception:
        message = str(e)
        if "FOREIGN KEY" in message:
            return NotFound(f"Folder referenced by {kind.value} record does not exist")
        return ValidationError(f"Invalid {kind.value} record: {message}")

    def _get_sync(self, kind: RecordKind, record_id: str) -> dict[str, Any]:
        with self._conn() as conn:
            cursor = conn.execute(f"SELECT * FROM {kind.value} WHERE id = ?", (record_id,))
            row = cursor.fetchone()
        if row is None:
            raise NotFound(f"No {kind.value} record with id {record_id}")
        return self._row_to_record(row)

    def _insert_sync(self, kind: RecordKind, fields: dict[str, Any]) -> dict[str, Any]:
        encoded = self._encode(kind, fields)
        encoded["id"] = uuid.uuid4().hex
        encoded["created_at"] = get_now().isoformat()
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        try:
            with self._conn() as conn:
                conn.execute(
                    f"INSERT INTO {kind.value} ({columns}) VALUES ({placeholders})",
                    list(encoded.values()),
                )
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(kind, e) from e
        except sqlite3.Error as e:
            raise GatewayError(f"Failed to insert {kind.value} record: {e}") from e
        logger.debug("Inserted %s record %s", kind.value, encoded["id"])
        return self._get_sync(kind, encoded["id"])

    def _update_sync(
        self,
        kind: RecordKind,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int | None,
    ) -> dict[str, Any]:
        encoded = self._encode(kind, fields)
        if not encoded:
            return self._get_sync(kind, record_id)

        updates = [f"{column} = ?" for column in encoded]
        params: list[Any] = list(encoded.values())
        query = f"UPDATE {kind.value} SET {', '.join(updates)} WHERE id = ?"
        params.append(record_id)
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)

        try:
            with self._conn() as conn:
                cursor = conn.execute(query, params)
                changed = cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(kind, e) from e
        except sqlite3.Error as e:
            raise GatewayError(f"Failed to update {kind.value} record {record_id}: {e}") from e

        if changed == 0:
            # Either the id is unknown or the version moved underneath us
            current = self._get_sync(kind, record_id)
            raise VersionConflict(
                f"{kind.value} record {record_id} is at version {current.get('version')}, "
                f"expected {expected_version}"
            )
        return self._get_sync(kind, record_id)

    def _delete_sync(self, kind: RecordKind, record_id: str) -> None:
        try:
            with self._conn() as conn:
                cursor = conn.execute(f"DELETE FROM {kind.value} WHERE id = ?", (record_id,))
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise GatewayError(f"Failed to delete {kind.value} record {record_id}: {e}") from e
        if deleted == 0:
            raise NotFound(f"No {kind.value} record with id {record_id}")
        logger.debug("Deleted %s record %s", kind.value, record_id)

    def _select_sync(
        self,
        kind: RecordKind,
        folder_id: str | None,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        query = f"SELECT * FROM {kind.value}"
        params: list[Any] = []
        if folder_id is not None:
            if kind is RecordKind.FOLDER:
                raise ValidationError("Folders cannot be scoped to a folder")
            query += " WHERE folder_id = ?"
            params.append(folder_id)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._conn() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def _upload_blob_sync(self, data: bytes, filename: str) -> str:
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha256(data).hexdigest()
        blob_path = self.blob_dir / f"{digest}{Path(filename).suffix}"
        if not blob_path.exists():
            # Write to a temp file, then replace, so readers never see partial blobs
            tmp_path = blob_path.with_suffix(blob_path.suffix + ".uploading")
            try:
                tmp_path.write_bytes(data)
                tmp_path.replace(blob_path)
            except OSError as e:
                if tmp_path.exists():
                    tmp_path.unlink()
                raise GatewayError(f"Failed to store blob {filename}: {e}") from e
        logger.info("Stored %s (%.1f KB) as %s", filename, len(data) / 1024, blob_path.name)
        return blob_path.resolve().as_uri()

    # ==================== Gateway API ====================

    async def insert(self, kind: RecordKind, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._run(self._insert_sync, kind, fields)

    async def get(self, kind: RecordKind, record_id: str) -> dict[str, Any]:
        return await self._run(self._get_sync, kind, record_id)

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await self._run(self._update_sync, kind, record_id, fields, expected_version)

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        await self._run(self._delete_sync, kind, record_id)

    async def select(
        self,
        kind: RecordKind,
        folder_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return await self._run(self._select_sync, kind, folder_id, limit)

    async def upload_blob(self, data: bytes, filename: str, content_type: str) -> str:
        logger.debug("Uploading %s (%s)", filename, content_type)
        return await self._run(self._upload_blob_sync, data, filename)
