from pathlib import Path
from urllib.parse import urlparse

import pytest

from muesli.errors import NotFound, ValidationError, VersionConflict
from muesli.storage import RecordKind, SQLiteGateway


async def _note(gateway, folder_id, **fields):
    record = {"folder_id": folder_id, "content": "hello", "type": "text", "version": 1}
    record.update(fields)
    return await gateway.insert(RecordKind.NOTE, record)


@pytest.mark.asyncio
async def test_insert_assigns_id_and_timestamp(gateway):
    record = await gateway.insert(
        RecordKind.FOLDER, {"name": "Inbox", "description": "Unsorted", "tags": ["b", "a"]}
    )

    assert record["id"]
    assert record["created_at"]
    assert record["tags"] == ["a", "b"]
    assert await gateway.get(RecordKind.FOLDER, record["id"]) == record


@pytest.mark.asyncio
async def test_folder_name_must_not_be_blank(gateway):
    with pytest.raises(ValidationError):
        await gateway.insert(RecordKind.FOLDER, {"name": "  ", "description": "x"})


@pytest.mark.asyncio
async def test_recording_needs_file_url(gateway):
    folder = await gateway.insert(RecordKind.FOLDER, {"name": "Voice", "description": "x"})

    with pytest.raises(ValidationError):
        await _note(gateway, folder["id"], type="recording")
    with pytest.raises(ValidationError):
        await _note(gateway, folder["id"], file_url="file:///a.wav")

    recording = await _note(gateway, folder["id"], type="recording", file_url="file:///a.wav")
    assert recording["file_url"] == "file:///a.wav"


@pytest.mark.asyncio
async def test_unknown_fields_are_rejected(gateway):
    with pytest.raises(ValidationError):
        await gateway.insert(RecordKind.FOLDER, {"name": "x", "description": "y", "owner": "me"})


@pytest.mark.asyncio
async def test_note_for_missing_folder_is_not_found(gateway):
    with pytest.raises(NotFound):
        await _note(gateway, "nope")


@pytest.mark.asyncio
async def test_update_checks_expected_version(gateway):
    folder = await gateway.insert(RecordKind.FOLDER, {"name": "Inbox", "description": "x"})
    note = await _note(gateway, folder["id"])

    updated = await gateway.update(
        RecordKind.NOTE, note["id"], {"content": "edited", "version": 2}, expected_version=1
    )
    assert updated["version"] == 2

    with pytest.raises(VersionConflict):
        await gateway.update(
            RecordKind.NOTE, note["id"], {"content": "stale", "version": 2}, expected_version=1
        )
    assert (await gateway.get(RecordKind.NOTE, note["id"]))["content"] == "edited"


@pytest.mark.asyncio
async def test_update_and_delete_missing_records(gateway):
    with pytest.raises(NotFound):
        await gateway.update(RecordKind.NOTE, "missing", {"content": "x"}, expected_version=1)
    with pytest.raises(NotFound):
        await gateway.delete(RecordKind.FOLDER, "missing")
    with pytest.raises(NotFound):
        await gateway.get(RecordKind.FOLDER, "missing")


@pytest.mark.asyncio
async def test_folder_delete_cascades(gateway):
    folder = await gateway.insert(RecordKind.FOLDER, {"name": "Inbox", "description": "x"})
    other = await gateway.insert(RecordKind.FOLDER, {"name": "Other", "description": "x"})
    await _note(gateway, folder["id"])
    kept = await _note(gateway, other["id"])
    await gateway.insert(
        RecordKind.SYNTHESIZED_IDEA, {"folder_id": folder["id"], "content": "summary"}
    )

    await gateway.delete(RecordKind.FOLDER, folder["id"])

    assert await gateway.select(RecordKind.NOTE, folder_id=folder["id"]) == []
    assert await gateway.select(RecordKind.SYNTHESIZED_IDEA, folder_id=folder["id"]) == []
    assert [n["id"] for n in await gateway.select(RecordKind.NOTE)] == [kept["id"]]


@pytest.mark.asyncio
async def test_select_newest_first_with_limit(gateway):
    folder = await gateway.insert(RecordKind.FOLDER, {"name": "Inbox", "description": "x"})
    ids = [(await _note(gateway, folder["id"], content=f"n{i}"))["id"] for i in range(3)]

    notes = await gateway.select(RecordKind.NOTE, folder_id=folder["id"])
    assert [n["id"] for n in notes] == list(reversed(ids))

    latest = await gateway.select(RecordKind.NOTE, folder_id=folder["id"], limit=1)
    assert [n["id"] for n in latest] == [ids[-1]]


@pytest.mark.asyncio
async def test_upload_blob_is_content_addressed(gateway, tmp_path):
    first = await gateway.upload_blob(b"RIFF-data", "recording-1.wav", "audio/wav")
    second = await gateway.upload_blob(b"RIFF-data", "recording-2.wav", "audio/wav")

    assert first == second
    path = Path(urlparse(first).path)
    assert path.parent == (tmp_path / "blobs").resolve()
    assert path.read_bytes() == b"RIFF-data"
    assert list(path.parent.glob("*.uploading")) == []


def test_schema_survives_reopen(tmp_path):
    db_path = tmp_path / "reopen.db"
    SQLiteGateway(db_path, tmp_path / "blobs").close()
    gateway = SQLiteGateway(db_path, tmp_path / "blobs")
    gateway.close()
    assert db_path.exists()
