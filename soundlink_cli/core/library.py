"""
Reversible library mutations: deleting, renaming and moving tracks and
playlists, and undoing those actions or a silence-trim batch. Also lists the
playlists and tracks of a library folder.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles.os

from soundlink_cli.exceptions import (
    ManifestError,
    RestoreConflictError,
    SoundLinkError,
)
from soundlink_cli.media.metadata import read_duration_seconds
from soundlink_cli.storage.trash import (
    ManifestStore,
    UndoAction,
    UndoJournal,
    UndoTrash,
    UndoType,
    move_path,
)
from soundlink_cli.utils.path import list_audio_files, safe_name

log = logging.getLogger(__name__)

TRASH_DIR_NAME = "undo-trash"
MANIFEST_DIR_NAME = "trim-undo-manifests"


@dataclass
class ActionResult:
    """Outcome of a library mutation or an undo."""

    success: bool
    error: str | None = None
    new_path: Path | None = None
    restored_path: Path | None = None
    restored_count: int = 0
    undo_action: UndoAction | None = None
    retryable: bool = False


@dataclass
class TrackInfo:
    name: str
    path: Path
    duration_seconds: float | None = None


@dataclass
class PlaylistInfo:
    """A playlist folder with its tracks and their combined length."""

    name: str
    path: Path
    tracks: list[TrackInfo] = field(default_factory=list)

    @property
    def track_count(self) -> int:
        return len(self.tracks)

    @property
    def total_seconds(self) -> float:
        return sum(t.duration_seconds or 0.0 for t in self.tracks)


def _scan_playlist_sync(folder: Path) -> PlaylistInfo:
    tracks = [
        TrackInfo(p.stem, p, read_duration_seconds(p)) for p in list_audio_files(folder)
    ]
    return PlaylistInfo(folder.name, folder, tracks)


async def scan_playlist(folder: Path | str) -> PlaylistInfo:
    """
    Lists the tracks of one playlist folder with their durations. Tracks
    whose length cannot be read count as zero towards the total.
    """
    folder = Path(folder)
    if not await aiofiles.os.path.isdir(folder):
        return PlaylistInfo(folder.name, folder)
    return await asyncio.to_thread(_scan_playlist_sync, folder)


async def scan_library(root: Path | str) -> list[PlaylistInfo]:
    """Lists every playlist folder directly under ``root``, sorted by name."""
    root = Path(root)
    if not await aiofiles.os.path.isdir(root):
        return []
    folders = sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name.lower())
    return [await scan_playlist(folder) for folder in folders]


class Library:
    """Applies library mutations and records how to reverse them."""

    def __init__(
        self,
        trash: UndoTrash,
        manifests: ManifestStore,
        journal: UndoJournal | None = None,
    ):
        self.trash = trash
        self.manifests = manifests
        self.journal = journal

    @classmethod
    def for_config_dir(cls, config_dir: Path) -> "Library":
        trash = UndoTrash(config_dir / TRASH_DIR_NAME)
        return cls(
            trash,
            ManifestStore(config_dir / MANIFEST_DIR_NAME, trash),
            UndoJournal(config_dir),
        )

    def record(self, action: UndoAction | None) -> None:
        if action is not None and self.journal is not None:
            self.journal.push(action)

    async def _delete(self, path: Path, undo_type: UndoType) -> ActionResult:
        record = await self.trash.move_to_trash(path)
        action = UndoAction(type=undo_type, payload=record.model_dump())
        self.record(action)
        return ActionResult(success=True, undo_action=action)

    async def delete_track(self, path: Path | str) -> ActionResult:
        path = Path(path)
        if not await aiofiles.os.path.isfile(path):
            return ActionResult(success=False, error="File does not exist.")
        try:
            return await self._delete(path, UndoType.DELETE_TRACK)
        except OSError as e:
            log.error(f"[red]Failed to delete track '{path}':[/] {e}")
            return ActionResult(success=False, error=str(e))

    async def delete_playlist(self, path: Path | str) -> ActionResult:
        path = Path(path)
        if not await aiofiles.os.path.isdir(path):
            return ActionResult(success=False, error="Playlist folder does not exist.")
        try:
            return await self._delete(path, UndoType.DELETE_PLAYLIST)
        except OSError as e:
            log.error(f"[red]Failed to delete playlist '{path}':[/] {e}")
            return ActionResult(success=False, error=str(e))

    async def rename_track(self, path: Path | str, new_name: str) -> ActionResult:
        """Renames a track file, keeping its extension."""
        path = Path(path)
        sanitized = safe_name(new_name)
        if not sanitized:
            return ActionResult(success=False, error="Invalid track name.")
        if not await aiofiles.os.path.isfile(path):
            return ActionResult(success=False, error="File does not exist.")

        new_path = path.with_name(f"{sanitized}{path.suffix}")
        if await aiofiles.os.path.exists(new_path):
            return ActionResult(
                success=False,
                error="A track with this name already exists in this playlist.",
            )
        try:
            await aiofiles.os.rename(path, new_path)
        except OSError as e:
            log.error(f"[red]Failed to rename track '{path}':[/] {e}")
            return ActionResult(success=False, error=str(e))

        action = UndoAction(
            type=UndoType.RENAME_TRACK,
            payload={"current_path": str(new_path), "previous_name": path.stem},
        )
        self.record(action)
        return ActionResult(success=True, new_path=new_path, undo_action=action)

    async def rename_playlist(self, path: Path | str, new_name: str) -> ActionResult:
        path = Path(path)
        sanitized = safe_name(new_name)
        if not sanitized:
            return ActionResult(success=False, error="Invalid playlist name.")
        if not await aiofiles.os.path.isdir(path):
            return ActionResult(success=False, error="Playlist folder does not exist.")

        new_path = path.parent / sanitized
        if await aiofiles.os.path.exists(new_path):
            return ActionResult(
                success=False, error="A playlist with this name already exists."
            )
        try:
            await aiofiles.os.rename(path, new_path)
        except OSError as e:
            log.error(f"[red]Failed to rename playlist '{path}':[/] {e}")
            return ActionResult(success=False, error=str(e))

        action = UndoAction(
            type=UndoType.RENAME_PLAYLIST,
            payload={"current_path": str(new_path), "previous_name": path.name},
        )
        self.record(action)
        return ActionResult(success=True, new_path=new_path, undo_action=action)

    async def move_track(self, path: Path | str, playlist: Path | str) -> ActionResult:
        """Moves a track file into another playlist folder, keeping its name."""
        path, playlist = Path(path), Path(playlist)
        if not await aiofiles.os.path.isfile(path):
            return ActionResult(success=False, error="Source file does not exist.")
        if not await aiofiles.os.path.isdir(playlist):
            return ActionResult(
                success=False, error="Destination playlist does not exist."
            )

        new_path = playlist / path.name
        if await aiofiles.os.path.exists(new_path):
            return ActionResult(
                success=False,
                error="A track with this name already exists in the destination playlist.",
            )
        try:
            await move_path(path, new_path)
        except OSError as e:
            log.error(f"[red]Failed to move track '{path}':[/] {e}")
            return ActionResult(success=False, error=str(e))

        action = UndoAction(
            type=UndoType.MOVE_TRACK,
            payload={
                "current_path": str(new_path),
                "original_path": str(path),
                "item_name": path.name,
            },
        )
        self.record(action)
        return ActionResult(success=True, new_path=new_path, undo_action=action)

    async def _undo_rename(self, action: UndoAction) -> ActionResult:
        current = action.payload.get("current_path")
        previous_raw = action.payload.get("previous_name") or ""
        is_track = action.type is UndoType.RENAME_TRACK
        kind = "track" if is_track else "playlist"

        if not current or not await aiofiles.os.path.exists(current):
            return ActionResult(
                success=False, error=f"Current {kind} path no longer exists."
            )
        current = Path(current)
        previous = safe_name(Path(previous_raw).stem if is_track else previous_raw)
        if not previous:
            return ActionResult(
                success=False, error=f"Invalid previous {kind} name for undo."
            )

        target = current.with_name(f"{previous}{current.suffix}" if is_track else previous)
        if await aiofiles.os.path.exists(target):
            return ActionResult(
                success=False,
                error=f"Cannot undo rename because the original {kind} name already exists.",
                retryable=True,
            )
        await aiofiles.os.rename(current, target)
        return ActionResult(success=True, restored_path=target)

    async def _undo_move(self, action: UndoAction) -> ActionResult:
        current = action.payload.get("current_path")
        original = action.payload.get("original_path")
        if not current or not original:
            return ActionResult(success=False, error="Undo payload is missing required paths.")
        if not await aiofiles.os.path.isfile(current):
            return ActionResult(success=False, error="Moved track no longer exists.")
        if await aiofiles.os.path.exists(original):
            return ActionResult(
                success=False,
                error="Cannot undo move because a file exists at the original location.",
                retryable=True,
            )
        await aiofiles.os.makedirs(Path(original).parent, exist_ok=True)
        await move_path(Path(current), Path(original))
        return ActionResult(success=True, restored_path=Path(original))

    async def _undo_delete(self, action: UndoAction) -> ActionResult:
        trash_path = action.payload.get("trash_path")
        try:
            restored = await self.trash.restore(
                trash_path, action.payload.get("original_path")
            )
        except RestoreConflictError as e:
            # Only worth retrying while the trashed item is still there
            return ActionResult(
                success=False,
                error=str(e),
                retryable=bool(trash_path) and await aiofiles.os.path.exists(trash_path),
            )
        return ActionResult(success=True, restored_path=restored)

    async def undo(self, action: UndoAction) -> ActionResult:
        """
        Reverses a previously returned undo action. A failure that leaves the
        action recoverable (for example a name clash) is marked ``retryable``.
        """
        try:
            match action.type:
                case UndoType.DELETE_TRACK | UndoType.DELETE_PLAYLIST:
                    return await self._undo_delete(action)
                case UndoType.RENAME_TRACK | UndoType.RENAME_PLAYLIST:
                    return await self._undo_rename(action)
                case UndoType.MOVE_TRACK:
                    return await self._undo_move(action)
                case UndoType.TRIM_SILENCE_BATCH:
                    return await self._undo_trim(action)
        except (SoundLinkError, OSError) as e:
            log.debug(
                f"Undo of {action.type.value} failed",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return ActionResult(
                success=False, error=str(e), retryable=isinstance(e, OSError)
            )
        return ActionResult(
            success=False, error=f"Unsupported undo action type: {action.type}"
        )

    async def _undo_trim(self, action: UndoAction) -> ActionResult:
        manifest_id = action.payload.get("manifest_id", "")
        try:
            restored = await self.manifests.undo(manifest_id)
        except ManifestError:
            return ActionResult(
                success=False,
                error="Undo manifest for silence trim is missing or empty.",
            )
        except RestoreConflictError as e:
            return ActionResult(
                success=e.restored_count > 0,
                error=str(e),
                restored_count=e.restored_count,
                retryable=True,
            )
        return ActionResult(success=True, restored_count=restored)

    async def undo_last(self) -> ActionResult:
        """
        Undoes the most recent journaled action. The action leaves the journal
        only once it is fully undone or can no longer be undone, so a blocked
        restore can be retried after the conflict is cleared.
        """
        if self.journal is None or (action := self.journal.peek()) is None:
            return ActionResult(success=False, error="Nothing to undo.")
        result = await self.undo(action)
        if not result.retryable:
            self.journal.pop()
        result.undo_action = action
        return result
