"""Assemble a completed session's chunks into a numbered asset folder."""

import asyncio
import logging
import shutil
import threading
from pathlib import Path
from typing import Optional

from assetpin.core.exceptions import MergeError
from assetpin.models.progress import ProgressStage
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.sessions.receiver import IMAGES, METADATA
from assetpin.sessions.registry import SessionRegistry, UploadSession

logger = logging.getLogger(__name__)

CATEGORIES = (IMAGES, METADATA)


def numeric_folders(assets_root: Path) -> list[Path]:
    """Numbered asset folders under assets_root, in numeric order."""
    if not assets_root.is_dir():
        return []
    folders = [p for p in assets_root.iterdir() if p.is_dir() and p.name.isdigit()]
    return sorted(folders, key=lambda p: int(p.name))


class FolderAllocator:
    """Hands out asset folder numbers.

    The counter starts at one past the highest numeric folder found on disk
    and is incremented under a lock, so concurrently completing sessions never
    receive the same folder. Numbers whose directory already exists are
    skipped.

    Allocated folders stay in flight until released, and folders picked up
    for batch processing are claimed the same way, so one folder is never
    handled by two pipelines at once.
    """

    def __init__(self, assets_root: Path):
        self.assets_root = Path(assets_root)
        self._lock = threading.Lock()
        self._next: Optional[int] = None
        self._in_flight: set[str] = set()

    def _scan_max(self) -> int:
        folders = numeric_folders(self.assets_root)
        return int(folders[-1].name) if folders else 0

    def peek(self) -> int:
        """Next number that would be allocated, without reserving it."""
        with self._lock:
            if self._next is None:
                return self._scan_max() + 1
            return self._next

    def allocate(self) -> Path:
        """Reserve the next folder number and create its directory."""
        with self._lock:
            if self._next is None:
                self._next = self._scan_max() + 1
            self.assets_root.mkdir(parents=True, exist_ok=True)
            while True:
                folder = self.assets_root / str(self._next)
                self._next += 1
                try:
                    folder.mkdir()
                except FileExistsError:
                    continue
                self._in_flight.add(folder.name)
                logger.debug("Asset folder allocated", extra={"folder": folder.name})
                return folder

    def claim(self, folder: Path) -> bool:
        """Mark an existing folder in flight; False if a pipeline already holds it."""
        with self._lock:
            if folder.name in self._in_flight:
                return False
            self._in_flight.add(folder.name)
            return True

    def release(self, folder: Path) -> None:
        with self._lock:
            self._in_flight.discard(folder.name)

    def in_flight(self) -> set[str]:
        with self._lock:
            return set(self._in_flight)

    def discard(self, folder: Path) -> None:
        """Delete a folder that was never filled completely and release it."""
        shutil.rmtree(folder, ignore_errors=True)
        self.release(folder)
        logger.debug("Asset folder discarded", extra={"folder": folder.name})


def _copy_category(source: Path, destination: Path) -> int:
    """Copy every file of one chunk category; a missing source counts as empty."""
    destination.mkdir(parents=True, exist_ok=True)
    if not source.is_dir():
        return 0
    copied = 0
    for entry in sorted(source.iterdir()):
        if entry.is_file():
            shutil.copy2(entry, destination / entry.name)
            copied += 1
    return copied


class ChunkMerger:
    """Merges a session's chunk directories into a new asset folder."""

    def __init__(
        self,
        registry: SessionRegistry,
        allocator: FolderAllocator,
        broadcaster: ProgressBroadcaster,
    ):
        self.registry = registry
        self.allocator = allocator
        self.broadcaster = broadcaster

    @staticmethod
    def _merge_chunk(chunk_dir: Path, folder: Path) -> dict[str, int]:
        return {
            category: _copy_category(chunk_dir / category, folder / category)
            for category in CATEGORIES
        }

    async def merge(self, session: UploadSession) -> Path:
        """Merge all chunks of a completed session.

        On success the session's temp tree is deleted and the session is
        removed from the registry. On failure the temp tree is kept and the
        partially filled asset folder is deleted.

        Returns:
            Path of the new asset folder, still in flight with the allocator

        Raises:
            MergeError: If any copy fails
        """
        session_id = session.session_id
        self.broadcaster.emit(
            session_id, ProgressStage.MERGING, status="started", totalChunks=session.total_chunks
        )

        counts = {category: 0 for category in CATEGORIES}
        folder: Optional[Path] = None
        try:
            folder = await asyncio.to_thread(self.allocator.allocate)
            for chunk_index in range(session.total_chunks):
                copied = await asyncio.to_thread(
                    self._merge_chunk, session.chunk_dir(chunk_index), folder
                )
                for category, count in copied.items():
                    counts[category] += count
                self.broadcaster.emit(
                    session_id,
                    ProgressStage.MERGING,
                    chunk=chunk_index,
                    totalChunks=session.total_chunks,
                )
        except OSError as e:
            logger.error(
                "Failed to merge chunks",
                extra={"session_id": session_id, "error": str(e)},
                exc_info=True,
            )
            # A half-filled folder must not be picked up as a bundle later
            if folder is not None:
                await asyncio.to_thread(self.allocator.discard, folder)
            error = MergeError(f"Failed to merge chunks for session {session_id}: {e}")
            self.broadcaster.emit_error(session_id, error)
            raise error from e

        await asyncio.to_thread(shutil.rmtree, session.temp_root, True)
        self.registry.remove(session_id)

        logger.info(
            "Chunks merged",
            extra={
                "session_id": session_id,
                "folder": folder.name,
                "images": counts[IMAGES],
                "metadata": counts[METADATA],
            },
        )
        self.broadcaster.emit(
            session_id,
            ProgressStage.MERGING,
            status="done",
            folder=folder.name,
            images=counts[IMAGES],
            metadata=counts[METADATA],
        )
        return folder
