"""Entity synchronization store.

The store is the single source of truth for folder, note and synthesis state
the UI sees. Every mutation follows the same protocol:

1. apply the change through the gateway
2. on success, cache the record exactly as the gateway returned it
3. on failure, leave the cache untouched and re-raise

Nothing is applied optimistically. Readers get frozen snapshots and subscribe
to the change signals; the cache maps are never handed out.

Operations on different entities are independent. There is no cross-entity
locking: a folder delete racing an in-flight note insert for the same folder
can leave that note cached until the folder's notes are fetched again.
"""

import logging
from collections.abc import Iterable
from typing import Any

from PyQt6.QtCore import QObject, pyqtSignal

from muesli.capture.controller import CaptureController
from muesli.errors import (
    ConfigError,
    MuesliError,
    NotFound,
    NothingToSynthesize,
    RecordingNotSaved,
    SynthesisFailed,
    ValidationError,
)
from muesli.models import Folder, Note, NoteType, SynthesizedIdea
from muesli.storage.gateway import Gateway, RecordKind
from muesli.synthesis.base import SynthesisService, Transcriber
from muesli.synthesis.prompt import build_synthesis_prompt

logger = logging.getLogger("muesli")

FOLDER_FIELDS = ("name", "description", "tags")
NOTE_FIELDS = ("content", "transcription", "tags")
FIXED_NOTE_FIELDS = ("id", "folder_id", "type", "file_url", "version", "created_at")


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must not be empty")
    return value


def _encode_tags(tags: Iterable[str]) -> list[str]:
    if isinstance(tags, str):
        raise ValidationError("tags must be a collection of strings, not a string")
    return sorted({str(t).strip() for t in tags if str(t).strip()})


class EntityStore(QObject):
    """Client-side cache of folders, notes and syntheses.

    Signals:
        folders_changed: The folder set or a folder's fields changed.
        notes_changed: The cached notes of a folder changed (folder id).
        synthesis_changed: The cached synthesis of a folder changed (folder id).
        busy_changed: A folder's synthesis started or finished (folder id, busy).
        current_folder_changed: The selected folder changed (Folder or None).
    """

    folders_changed = pyqtSignal()
    notes_changed = pyqtSignal(str)
    synthesis_changed = pyqtSignal(str)
    busy_changed = pyqtSignal(str, bool)
    current_folder_changed = pyqtSignal(object)

    def __init__(
        self,
        gateway: Gateway,
        synthesizer: SynthesisService | None = None,
        transcriber: Transcriber | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._synthesizer = synthesizer
        self._transcriber = transcriber

        self._folders: dict[str, Folder] = {}
        self._notes: dict[str, Note] = {}
        self._folder_notes: dict[str, list[str]] = {}  # newest first
        self._syntheses: dict[str, SynthesizedIdea] = {}
        self._busy: set[str] = set()
        self._current_folder_id: str | None = None
        self._search_query = ""

    # ==================== Snapshots ====================

    @property
    def folders(self) -> list[Folder]:
        return sorted(self._folders.values(), key=lambda f: f.created_at, reverse=True)

    def folder(self, folder_id: str) -> Folder | None:
        return self._folders.get(folder_id)

    def notes(self, folder_id: str) -> list[Note]:
        return [self._notes[nid] for nid in self._folder_notes.get(folder_id, [])]

    def note(self, note_id: str) -> Note | None:
        return self._notes.get(note_id)

    def synthesis(self, folder_id: str) -> SynthesizedIdea | None:
        return self._syntheses.get(folder_id)

    def is_busy(self, folder_id: str) -> bool:
        return folder_id in self._busy

    @property
    def current_folder(self) -> Folder | None:
        if self._current_folder_id is None:
            return None
        return self._folders.get(self._current_folder_id)

    @property
    def search_query(self) -> str:
        return self._search_query

    def set_search_query(self, query: str) -> None:
        self._search_query = query.strip()
        if self._current_folder_id is not None:
            self.notes_changed.emit(self._current_folder_id)

    def visible_notes(self, folder_id: str | None = None) -> list[Note]:
        """Notes of a folder (default: the current one) matching the search query."""
        folder_id = folder_id or self._current_folder_id
        if folder_id is None:
            return []
        notes = self.notes(folder_id)
        query = self._search_query.lower()
        if not query:
            return notes
        return [
            n
            for n in notes
            if query in n.content.lower()
            or (n.transcription and query in n.transcription.lower())
            or any(query in t.lower() for t in n.tags)
        ]

    # ==================== Folders ====================

    async def fetch_folders(self) -> list[Folder]:
        records = await self._gateway.select(RecordKind.FOLDER)
        self._folders = {r["id"]: Folder.from_record(r) for r in records}
        logger.debug("Fetched %d folders", len(self._folders))
        self.folders_changed.emit()
        return self.folders

    async def create_folder(self, name: str, description: str, tags: Iterable[str] = ()) -> Folder:
        _require_text(name, "Folder name")
        _require_text(description, "Folder description")
        record = await self._gateway.insert(
            RecordKind.FOLDER,
            {"name": name.strip(), "description": description.strip(), "tags": _encode_tags(tags)},
        )
        folder = Folder.from_record(record)
        self._folders[folder.id] = folder
        logger.info("Created folder %s (%s)", folder.name, folder.id)
        self.folders_changed.emit()
        return folder

    async def update_folder(self, folder_id: str, **fields: Any) -> Folder:
        unknown = set(fields) - set(FOLDER_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update folder fields: {', '.join(sorted(unknown))}")
        payload = dict(fields)
        if "name" in payload:
            payload["name"] = _require_text(payload["name"], "Folder name").strip()
        if "description" in payload:
            payload["description"] = _require_text(payload["description"], "Folder description").strip()
        if "tags" in payload:
            payload["tags"] = _encode_tags(payload["tags"])

        record = await self._gateway.update(RecordKind.FOLDER, folder_id, payload)
        folder = Folder.from_record(record)
        self._folders[folder.id] = folder
        self.folders_changed.emit()
        if self._current_folder_id == folder.id:
            self.current_folder_changed.emit(folder)
        return folder

    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder. The gateway cascades to its notes and syntheses."""
        await self._gateway.delete(RecordKind.FOLDER, folder_id)
        self._folders.pop(folder_id, None)
        self._evict_folder(folder_id)
        logger.info("Deleted folder %s", folder_id)
        self.folders_changed.emit()
        if self._current_folder_id == folder_id:
            self._current_folder_id = None
            self.current_folder_changed.emit(None)

    def _evict_folder(self, folder_id: str) -> None:
        for note_id in self._folder_notes.pop(folder_id, []):
            self._notes.pop(note_id, None)
        had_synthesis = self._syntheses.pop(folder_id, None) is not None
        self.notes_changed.emit(folder_id)
        if had_synthesis:
            self.synthesis_changed.emit(folder_id)

    async def set_current_folder(self, folder: Folder | None) -> None:
        """Select a folder and load its notes from the gateway.

        A folder the cache does not hold is looked up through the gateway first;
        NotFound leaves the selection unchanged.
        """
        if folder is not None and folder.id not in self._folders:
            record = await self._gateway.get(RecordKind.FOLDER, folder.id)
            self._folders[folder.id] = Folder.from_record(record)
            self.folders_changed.emit()
        self._current_folder_id = folder.id if folder is not None else None
        self.current_folder_changed.emit(self.current_folder)
        if folder is not None:
            await self.fetch_notes(folder.id)

    # ==================== Notes ====================

    async def fetch_notes(self, folder_id: str) -> list[Note]:
        """Replace the cached notes of a folder with the gateway's list."""
        records = await self._gateway.select(RecordKind.NOTE, folder_id=folder_id)
        notes = [Note.from_record(r) for r in records]
        for note_id in self._folder_notes.get(folder_id, []):
            self._notes.pop(note_id, None)
        self._notes.update((n.id, n) for n in notes)
        self._folder_notes[folder_id] = [n.id for n in notes]
        logger.debug("Fetched %d notes for folder %s", len(notes), folder_id)
        self.notes_changed.emit(folder_id)
        return notes

    async def add_note(
        self,
        folder_id: str,
        content: str,
        note_type: NoteType | str = NoteType.TEXT,
        file_url: str | None = None,
        tags: Iterable[str] = (),
    ) -> Note:
        note_type = NoteType.parse(note_type)
        _require_text(content, "Note content")
        if note_type is NoteType.RECORDING and not file_url:
            raise ValidationError("Recording notes need a file reference")
        if note_type is NoteType.TEXT and file_url:
            raise ValidationError("Text notes cannot carry a file reference")

        record = await self._gateway.insert(
            RecordKind.NOTE,
            {
                "folder_id": folder_id,
                "content": content,
                "type": note_type.value,
                "file_url": file_url,
                "tags": _encode_tags(tags),
                "version": 1,
            },
        )
        note = Note.from_record(record)
        self._notes[note.id] = note
        self._folder_notes.setdefault(folder_id, []).insert(0, note.id)
        logger.info("Added %s note %s to folder %s", note.type.value, note.id, folder_id)
        self.notes_changed.emit(folder_id)
        return note

    async def update_note(self, note_id: str, **fields: Any) -> Note:
        """Update a cached note with check-and-set on its version.

        Raises VersionConflict if the note changed remotely since it was cached;
        fetch the folder's notes again before retrying.
        """
        if not fields:
            raise ValidationError("No note fields to update")
        fixed = set(fields) & set(FIXED_NOTE_FIELDS)
        if fixed:
            raise ValidationError(f"Note fields cannot be changed: {', '.join(sorted(fixed))}")
        unknown = set(fields) - set(NOTE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown note fields: {', '.join(sorted(unknown))}")

        current = self._notes.get(note_id)
        if current is None:
            raise NotFound(f"Note {note_id} is not loaded")

        payload = dict(fields)
        if "content" in payload:
            _require_text(payload["content"], "Note content")
        if "tags" in payload:
            payload["tags"] = _encode_tags(payload["tags"])
        payload["version"] = current.version + 1

        record = await self._gateway.update(
            RecordKind.NOTE, note_id, payload, expected_version=current.version
        )
        note = Note.from_record(record)
        self._notes[note.id] = note
        self.notes_changed.emit(note.folder_id)
        return note

    async def delete_note(self, note_id: str) -> None:
        await self._gateway.delete(RecordKind.NOTE, note_id)
        note = self._notes.pop(note_id, None)
        if note is None:
            return
        ids = self._folder_notes.get(note.folder_id, [])
        if note_id in ids:
            ids.remove(note_id)
        logger.info("Deleted note %s", note_id)
        self.notes_changed.emit(note.folder_id)

    async def commit_recording(self, folder_id: str, controller: CaptureController) -> Note:
        """Commit a stopped capture and file it as a recording note.

        If the upload succeeds but the note insert fails, RecordingNotSaved carries
        the CommitResult so the note can be added again with ``add_note``.
        """
        result = await controller.commit()
        try:
            return await self.add_note(
                folder_id, result.caption, NoteType.RECORDING, result.file_url
            )
        except MuesliError as e:
            logger.error("Recording uploaded to %s but its note was not saved", result.file_url)
            raise RecordingNotSaved(
                f"Recording uploaded to {result.file_url} but its note was not saved: {e}", result
            ) from e

    async def transcribe_note(self, note_id: str, data: bytes, mime_type: str) -> Note:
        """Transcribe a recording note's audio and store the text on the note."""
        if self._transcriber is None:
            raise ConfigError("No transcriber configured")
        note = self._notes.get(note_id)
        if note is None:
            raise NotFound(f"Note {note_id} is not loaded")
        if not note.is_recording:
            raise ValidationError("Only recording notes can be transcribed")

        text = await self._transcriber.transcribe(data, mime_type)
        return await self.update_note(note_id, transcription=text)

    # ==================== Synthesis ====================

    def _set_busy(self, folder_id: str, busy: bool) -> None:
        if busy:
            self._busy.add(folder_id)
        else:
            self._busy.discard(folder_id)
        self.busy_changed.emit(folder_id, busy)

    async def fetch_synthesis(self, folder_id: str) -> SynthesizedIdea | None:
        """Load the newest stored synthesis of a folder."""
        records = await self._gateway.select(
            RecordKind.SYNTHESIZED_IDEA, folder_id=folder_id, limit=1
        )
        if records:
            self._syntheses[folder_id] = SynthesizedIdea.from_record(records[0])
        else:
            self._syntheses.pop(folder_id, None)
        self.synthesis_changed.emit(folder_id)
        return self._syntheses.get(folder_id)

    async def synthesize_folder(self, folder_id: str) -> SynthesizedIdea:
        """Merge the folder's cached notes into one synthesis.

        Uses the notes cached when the call starts. The new synthesis replaces
        any cached one for the folder. On failure nothing is cached or stored.
        """
        if folder_id in self._busy:
            raise SynthesisFailed(f"Synthesis already running for folder {folder_id}")

        notes = self.notes(folder_id)
        if not notes:
            raise NothingToSynthesize("Nothing to synthesize")

        if self._synthesizer is None:
            raise ConfigError("No synthesis service configured")

        folder = self._folders.get(folder_id)
        self._set_busy(folder_id, True)
        try:
            prompt = build_synthesis_prompt(notes, folder.name if folder else None)
            logger.info("Synthesizing %d notes for folder %s", len(notes), folder_id)
            try:
                content = await self._synthesizer.generate(prompt)
            except Exception as e:
                logger.error("Synthesis service failed: %s", e)
                raise SynthesisFailed(f"Synthesis service failed: {e}") from e
            if not content or not content.strip():
                raise SynthesisFailed("Synthesis service returned no content")

            try:
                record = await self._gateway.insert(
                    RecordKind.SYNTHESIZED_IDEA, {"folder_id": folder_id, "content": content}
                )
            except Exception as e:
                logger.error("Failed to save synthesis: %s", e)
                raise SynthesisFailed(f"Failed to save synthesis: {e}") from e

            idea = SynthesizedIdea.from_record(record)
            self._syntheses[folder_id] = idea
            self.synthesis_changed.emit(folder_id)
            return idea
        finally:
            self._set_busy(folder_id, False)

    # ==================== Lifecycle ====================

    def close(self) -> None:
        """Drop all cached state at the end of a session."""
        self._folders.clear()
        self._notes.clear()
        self._folder_notes.clear()
        self._syntheses.clear()
        self._busy.clear()
        self._current_folder_id = None
        self._search_query = ""
        self.folders_changed.emit()
        self.current_folder_changed.emit(None)
