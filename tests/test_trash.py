import asyncio
import errno
from pathlib import Path

import aiofiles.os
import pytest

from soundlink_cli.exceptions import ManifestError, RestoreConflictError
from soundlink_cli.storage.trash import (
    ManifestStore,
    UndoAction,
    UndoJournal,
    UndoTrash,
    UndoType,
    generate_id,
    move_path,
)


@pytest.fixture
def trash(tmp_path):
    return UndoTrash(tmp_path / "trash")


@pytest.fixture
def manifests(tmp_path, trash):
    return ManifestStore(tmp_path / "manifests", trash)


def _track(directory, name, content=b"original"):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    return path


def test_generated_ids_are_unique():
    assert len({generate_id() for _ in range(200)}) == 200


def test_move_and_restore_file(tmp_path, trash):
    track = _track(tmp_path / "lib", "001 - Song.m4a")

    record = asyncio.run(trash.move_to_trash(track))

    assert not track.exists()
    assert record.item_name == "001 - Song.m4a"
    assert record.trash_path.endswith("-001 - Song.m4a")
    assert asyncio.run(trash.restore_record(record)) == track
    assert track.read_bytes() == b"original"


def test_move_and_restore_directory(tmp_path, trash):
    playlist = tmp_path / "lib" / "Mix"
    _track(playlist, "001 - Song.m4a")

    record = asyncio.run(trash.move_to_trash(playlist))
    assert not playlist.exists()

    asyncio.run(trash.restore_record(record))
    assert (playlist / "001 - Song.m4a").is_file()


def test_same_name_moves_get_distinct_trash_paths(tmp_path, trash):
    first = asyncio.run(trash.move_to_trash(_track(tmp_path / "a", "x.mp3")))
    second = asyncio.run(trash.move_to_trash(_track(tmp_path / "b", "x.mp3")))
    assert first.trash_path != second.trash_path


def test_restore_refuses_to_overwrite(tmp_path, trash):
    track = _track(tmp_path / "lib", "song.mp3")
    record = asyncio.run(trash.move_to_trash(track))
    track.write_bytes(b"new")

    with pytest.raises(RestoreConflictError):
        asyncio.run(trash.restore_record(record))
    assert track.read_bytes() == b"new"


def test_restore_missing_trash_item(tmp_path, trash):
    with pytest.raises(RestoreConflictError, match="no longer exists"):
        asyncio.run(trash.restore(tmp_path / "gone", tmp_path / "song.mp3"))


def test_restore_recreates_parent_directories(tmp_path, trash):
    track = _track(tmp_path / "lib" / "Mix", "song.mp3")
    record = asyncio.run(trash.move_to_trash(track))
    (tmp_path / "lib" / "Mix").rmdir()

    asyncio.run(trash.restore_record(record))
    assert track.is_file()


def _trim_like(trash, track, new_content=b"trimmed"):
    """Moves the original aside and puts a modified file in its place."""
    record = asyncio.run(trash.move_to_trash(track))
    track.write_bytes(new_content)
    return record


def test_manifest_undo_restores_originals_and_deletes_manifest(tmp_path, trash, manifests):
    lib = tmp_path / "lib"
    tracks = [_track(lib, f"{i:03d}.m4a", f"orig-{i}".encode()) for i in range(2)]
    records = [_trim_like(trash, t) for t in tracks]

    manifest_id = asyncio.run(manifests.save(records))
    assert manifests.manifest_path(manifest_id).is_file()

    assert asyncio.run(manifests.undo(manifest_id)) == 2
    assert [t.read_bytes() for t in tracks] == [b"orig-0", b"orig-1"]
    assert not manifests.manifest_path(manifest_id).exists()


def test_second_undo_of_same_manifest_fails(tmp_path, trash, manifests):
    track = _track(tmp_path / "lib", "a.m4a")
    manifest_id = asyncio.run(manifests.save([_trim_like(trash, track)]))
    asyncio.run(manifests.undo(manifest_id))

    with pytest.raises(ManifestError):
        asyncio.run(manifests.undo(manifest_id))
    assert track.read_bytes() == b"original"


def test_partial_undo_keeps_only_failed_items(tmp_path, trash, manifests):
    lib = tmp_path / "lib"
    good = _track(lib, "good.m4a", b"good-orig")
    bad = _track(lib, "bad.m4a", b"bad-orig")
    good_record = _trim_like(trash, good)
    bad_record = _trim_like(trash, bad)
    manifest_id = asyncio.run(manifests.save([good_record, bad_record]))

    # The trashed original of one track disappears
    Path(bad_record.trash_path).unlink()

    with pytest.raises(RestoreConflictError) as excinfo:
        asyncio.run(manifests.undo(manifest_id))

    assert excinfo.value.restored_count == 1
    assert good.read_bytes() == b"good-orig"
    remaining = asyncio.run(manifests.read(manifest_id))
    assert [item.item_name for item in remaining.items] == ["bad.m4a"]


def test_undo_of_missing_manifest(manifests):
    with pytest.raises(ManifestError):
        asyncio.run(manifests.undo("does-not-exist"))


def test_corrupt_manifest_is_reported(manifests):
    manifests.manifest_dir.mkdir(parents=True)
    manifests.manifest_path("broken").write_text("{", encoding="utf-8")
    with pytest.raises(ManifestError):
        asyncio.run(manifests.read("broken"))


def test_manifest_write_leaves_no_temp_files(tmp_path, trash, manifests):
    track = _track(tmp_path / "lib", "a.m4a")
    manifest_id = asyncio.run(manifests.save([_trim_like(trash, track)]))
    assert [p.name for p in manifests.manifest_dir.iterdir()] == [f"{manifest_id}.json"]


def test_journal_push_pop_and_limit(tmp_path):
    journal = UndoJournal(tmp_path)
    assert journal.pop() is None

    for i in range(UndoJournal.MAX_ENTRIES + 5):
        journal.push(UndoAction(type=UndoType.DELETE_TRACK, payload={"item_name": str(i)}))

    entries = UndoJournal(tmp_path).entries()
    assert len(entries) == UndoJournal.MAX_ENTRIES
    assert journal.peek().payload["item_name"] == str(UndoJournal.MAX_ENTRIES + 4)
    assert journal.pop().payload["item_name"] == str(UndoJournal.MAX_ENTRIES + 4)
    assert journal.peek().payload["item_name"] == str(UndoJournal.MAX_ENTRIES + 3)


def test_undo_action_description():
    action = UndoAction(type=UndoType.TRIM_SILENCE_BATCH, payload={"manifest_id": "m1"})
    assert action.describe() == "trim-library-silence-batch (manifest m1)"


@pytest.fixture
def cross_device(monkeypatch):
    """Makes every rename fail the way it does across filesystems."""
    renames = []

    async def rename(src, dst, *args, **kwargs):
        renames.append((src, dst))
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(aiofiles.os, "rename", rename)
    return renames


def test_cross_device_file_move_copies_then_deletes(tmp_path, trash, cross_device):
    track = _track(tmp_path / "lib", "song.m4a", b"audio")

    record = asyncio.run(trash.move_to_trash(track))
    assert cross_device
    assert not track.exists()
    assert Path(record.trash_path).read_bytes() == b"audio"

    asyncio.run(trash.restore_record(record))
    assert track.read_bytes() == b"audio"
    assert not Path(record.trash_path).exists()


def test_cross_device_directory_move_copies_tree(tmp_path, trash, cross_device):
    playlist = tmp_path / "lib" / "Mix"
    _track(playlist / "Disc 2", "b.m4a", b"b")
    _track(playlist, "a.m4a", b"a")

    record = asyncio.run(trash.move_to_trash(playlist))
    assert not playlist.exists()
    assert (Path(record.trash_path) / "Disc 2" / "b.m4a").read_bytes() == b"b"

    asyncio.run(trash.restore_record(record))
    assert (playlist / "a.m4a").read_bytes() == b"a"
    assert (playlist / "Disc 2" / "b.m4a").read_bytes() == b"b"
    assert not Path(record.trash_path).exists()


def test_other_rename_errors_are_not_retried_as_copies(tmp_path, monkeypatch):
    async def rename(src, dst, *args, **kwargs):
        raise OSError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(aiofiles.os, "rename", rename)
    track = _track(tmp_path / "lib", "song.m4a")

    with pytest.raises(PermissionError):
        asyncio.run(move_path(track, tmp_path / "elsewhere.m4a"))
    assert track.is_file()
    assert not (tmp_path / "elsewhere.m4a").exists()
