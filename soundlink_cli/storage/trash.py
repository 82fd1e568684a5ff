"""
Reversible deletion: items are moved into a holding directory instead of being
removed, and batch operations persist manifests so undo survives a crash.
"""

import asyncio
import errno
import json
import logging
import secrets
import shutil
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field, ValidationError

from soundlink_cli.exceptions import ManifestError, RestoreConflictError
from soundlink_cli.utils.fs import atomic_write_json, read_json

log = logging.getLogger(__name__)


class TrashRecord(BaseModel):
    """Where a trashed item lives now and where it came from."""

    trash_path: str
    original_path: str
    item_name: str


class UndoManifest(BaseModel):
    """A persisted group of trash records undone as one action."""

    id: str
    created_at: str
    items: list[TrashRecord] = Field(default_factory=list)


class UndoType(str, Enum):
    DELETE_TRACK = "delete-track"
    DELETE_PLAYLIST = "delete-playlist"
    RENAME_TRACK = "rename-track"
    RENAME_PLAYLIST = "rename-playlist"
    MOVE_TRACK = "move-track"
    TRIM_SILENCE_BATCH = "trim-library-silence-batch"


class UndoAction(BaseModel):
    """A reversible mutation as handed back to the caller."""

    type: UndoType
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def describe(self) -> str:
        p = self.payload
        if self.type is UndoType.TRIM_SILENCE_BATCH:
            return f"{self.type.value} (manifest {p.get('manifest_id')})"
        target = p.get("item_name") or p.get("current_path") or p.get("original_path")
        return f"{self.type.value}: {target}"


def generate_id() -> str:
    """A timestamp-plus-random identifier, unique across concurrent callers."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


async def move_path(source: Path, destination: Path) -> None:
    """Renames, degrading to copy-then-delete across filesystems."""
    try:
        await aiofiles.os.rename(source, destination)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    log.debug(f"Cross-device move for '{source.name}', copying instead.")
    if await aiofiles.os.path.isdir(source):
        await asyncio.to_thread(shutil.copytree, source, destination)
        await asyncio.to_thread(shutil.rmtree, source)
    else:
        await asyncio.to_thread(shutil.copy2, source, destination)
        await aiofiles.os.unlink(source)


class UndoTrash:
    """The holding area for moved-but-not-deleted files and folders."""

    def __init__(self, trash_dir: Path):
        self.trash_dir = trash_dir

    def build_trash_path(self, target_path: Path) -> Path:
        return self.trash_dir / f"{generate_id()}-{target_path.name}"

    async def move_to_trash(self, target_path: Path | str) -> TrashRecord:
        """Moves a file or directory into the trash and returns its record."""
        target_path = Path(target_path)
        await aiofiles.os.makedirs(self.trash_dir, exist_ok=True)
        trash_path = self.build_trash_path(target_path)
        await move_path(target_path, trash_path)
        log.debug(f"Moved '{target_path}' to trash as '{trash_path.name}'.")
        return TrashRecord(
            trash_path=str(trash_path),
            original_path=str(target_path),
            item_name=target_path.name,
        )

    async def restore(self, trash_path: Path | str, original_path: Path | str) -> Path:
        """
        Moves a trashed item back to where it came from.

        Raises:
            RestoreConflictError: If the paths are missing, the trash item is
                gone, or something already occupies the original path.
        """
        if not trash_path or not original_path:
            raise RestoreConflictError("Undo payload is missing required paths.")
        trash_path, original_path = Path(trash_path), Path(original_path)

        if not await aiofiles.os.path.exists(trash_path):
            raise RestoreConflictError(
                "Undo item no longer exists in temporary storage."
            )
        if await aiofiles.os.path.exists(original_path):
            raise RestoreConflictError(
                "Cannot restore because destination path already exists."
            )

        await aiofiles.os.makedirs(original_path.parent, exist_ok=True)
        await move_path(trash_path, original_path)
        log.debug(f"Restored '{original_path}' from trash.")
        return original_path

    async def restore_record(self, record: TrashRecord) -> Path:
        return await self.restore(record.trash_path, record.original_path)


class ManifestStore:
    """Stores batch-undo manifests as ``<id>.json`` files."""

    def __init__(self, manifest_dir: Path, trash: UndoTrash):
        self.manifest_dir = manifest_dir
        self.trash = trash

    def manifest_path(self, manifest_id: str) -> Path:
        return self.manifest_dir / f"{manifest_id}.json"

    async def write(self, manifest: UndoManifest) -> None:
        await aiofiles.os.makedirs(self.manifest_dir, exist_ok=True)
        path = self.manifest_path(manifest.id)
        temp_path = path.with_name(f"{path.name}.{secrets.token_hex(4)}.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(manifest.model_dump_json(indent=2))
            await aiofiles.os.replace(temp_path, path)
        finally:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.unlink(temp_path)

    async def save(self, items: list[TrashRecord]) -> str:
        """Persists a new manifest and returns its id."""
        manifest = UndoManifest(
            id=generate_id(),
            created_at=datetime.now(timezone.utc).isoformat(),
            items=items,
        )
        await self.write(manifest)
        return manifest.id

    async def read(self, manifest_id: str) -> UndoManifest | None:
        if not manifest_id:
            return None
        path = self.manifest_path(manifest_id)
        if not await aiofiles.os.path.isfile(path):
            return None
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                data = json.loads(await f.read())
            return UndoManifest.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            raise ManifestError(f"Undo manifest '{manifest_id}' is unreadable: {e}") from e

    async def delete(self, manifest_id: str) -> None:
        path = self.manifest_path(manifest_id)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.unlink(path)

    async def undo(self, manifest_id: str) -> int:
        """
        Restores every item of a manifest. A file currently occupying an
        original path (the modified version) is moved aside to the trash first.

        Returns:
            The number of items restored.

        Raises:
            ManifestError: If the manifest is missing or empty.
            RestoreConflictError: If some items could not be restored. The
                manifest then holds only those items, so undo can be retried.
        """
        manifest = await self.read(manifest_id)
        if manifest is None or not manifest.items:
            raise ManifestError("Undo manifest is missing or empty.")

        failed: list[TrashRecord] = []
        restored = 0
        for item in manifest.items:
            try:
                if not await aiofiles.os.path.exists(item.trash_path):
                    raise RestoreConflictError(
                        "Undo item no longer exists in temporary storage."
                    )
                if await aiofiles.os.path.exists(item.original_path):
                    await self.trash.move_to_trash(item.original_path)
                await self.trash.restore_record(item)
                restored += 1
            except (RestoreConflictError, OSError) as e:
                log.warning(f"[yellow]Could not restore '{item.item_name}':[/] {e}")
                failed.append(item)

        if failed:
            await self.write(
                UndoManifest(id=manifest.id, created_at=manifest.created_at, items=failed)
            )
            message = (
                f"Restored {restored} track(s), but {len(failed)} could not be restored."
                if restored
                else f"Unable to restore {len(failed)} track(s)."
            )
            raise RestoreConflictError(message, restored_count=restored)

        await self.delete(manifest_id)
        return restored


class UndoJournal:
    """
    A short history of reversible actions, persisted so the latest one can be
    undone from a later invocation.
    """

    FILE_NAME = "undo_history.json"
    MAX_ENTRIES = 50

    def __init__(self, config_dir_path: Path):
        self.journal_path = config_dir_path / self.FILE_NAME

    def _load(self) -> list[UndoAction]:
        data = read_json(self.journal_path, default=[])
        actions = []
        for raw in data if isinstance(data, list) else []:
            try:
                actions.append(UndoAction.model_validate(raw))
            except ValidationError as e:
                log.debug(f"Skipping invalid undo journal entry: {e}")
        return actions

    def _save(self, actions: list[UndoAction]) -> None:
        atomic_write_json(
            self.journal_path,
            [a.model_dump(mode="json") for a in actions[-self.MAX_ENTRIES :]],
        )

    def entries(self) -> list[UndoAction]:
        return self._load()

    def push(self, action: UndoAction) -> None:
        actions = self._load()
        actions.append(action)
        self._save(actions)

    def peek(self) -> UndoAction | None:
        actions = self._load()
        return actions[-1] if actions else None

    def pop(self) -> UndoAction | None:
        actions = self._load()
        if not actions:
            return None
        action = actions.pop()
        self._save(actions)
        return action
