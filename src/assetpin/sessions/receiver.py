"""Persist uploaded chunk files into session-scoped storage."""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import BinaryIO, Iterable, Optional

from assetpin.core.exceptions import InvalidChunk, PayloadTooLarge, ValidationError
from assetpin.sessions.registry import ChunkRegistration, SessionRegistry

logger = logging.getLogger(__name__)

IMAGES = "images"
METADATA = "metadata"

COPY_BLOCK_SIZE = 65536  # 64KB


@dataclass
class IncomingFile:
    """One file of a multipart request, already spooled by the web framework."""

    file_name: str
    content_type: str
    stream: BinaryIO
    size_bytes: Optional[int] = None

    def measure(self) -> int:
        """Size of the spooled stream, found by seeking to its end."""
        if self.size_bytes is None:
            self.stream.seek(0, 2)
            self.size_bytes = self.stream.tell()
            self.stream.seek(0)
        return self.size_bytes


def classify(content_type: str) -> str:
    """Media (images and video) go to images/, everything else to metadata/."""
    content_type = (content_type or "").lower()
    if content_type.startswith("image/") or content_type.startswith("video/"):
        return IMAGES
    return METADATA


def safe_file_name(file_name: str) -> str:
    """Strip any directory components a client put in the file name."""
    name = PureWindowsPath(PurePosixPath(file_name or "").name).name
    if name in ("", ".", ".."):
        raise ValidationError(f"Invalid file name: {file_name!r}")
    return name


def check_sizes(files: Iterable[IncomingFile], limit_bytes: int) -> None:
    """Reject the whole request if any file is over the limit.

    Raises:
        PayloadTooLarge: For the first oversize file
    """
    for incoming in files:
        size = incoming.measure()
        if size > limit_bytes:
            raise PayloadTooLarge(incoming.file_name, size, limit_bytes)


def write_stream(stream: BinaryIO, target_path: Path) -> None:
    """Stream-copy a spooled upload to its destination."""
    target_path.parent.mkdir(parents=True, exist_ok=True)
    stream.seek(0)
    with open(target_path, "wb") as f:
        shutil.copyfileobj(stream, f, COPY_BLOCK_SIZE)


async def store_files(files: list[IncomingFile], destination: Path) -> list[Path]:
    """Write files under destination/{images,metadata}/ by media type."""
    written: list[Path] = []
    for incoming in files:
        target = destination / classify(incoming.content_type) / safe_file_name(incoming.file_name)
        await asyncio.to_thread(write_stream, incoming.stream, target)
        written.append(target)
    return written


class ChunkReceiver:
    """Accepts one uploaded chunk and records it with the session registry."""

    def __init__(self, registry: SessionRegistry, max_file_size_bytes: int):
        self.registry = registry
        self.max_file_size_bytes = max_file_size_bytes

    async def receive(
        self,
        session_id: str,
        chunk_index: int,
        total_chunks: int,
        files: list[IncomingFile],
    ) -> ChunkRegistration:
        """Store a chunk's files and register the chunk.

        Size, index and session checks happen before anything is written, so
        a rejected chunk leaves no files and no session behind. A repeated
        delivery of a chunk that is already stored, still being written, or
        part of a completed session is acknowledged without touching disk.

        Raises:
            PayloadTooLarge: If any file exceeds the per-file limit
            InvalidSessionId: If the session id is not a plain directory name
            SessionMismatch: If total_chunks disagrees with the session
            InvalidChunk: If the index or count is out of range
        """
        check_sizes(files, self.max_file_size_bytes)
        for incoming in files:
            safe_file_name(incoming.file_name)
        if not 0 <= chunk_index < total_chunks:
            raise InvalidChunk(f"Chunk index {chunk_index} out of range for {total_chunks} chunks")

        session = self.registry.open(session_id, total_chunks)
        if not await self.registry.claim_chunk(session, chunk_index):
            logger.info(
                "Duplicate chunk ignored",
                extra={"session_id": session_id, "chunk_index": chunk_index},
            )
            return ChunkRegistration(session=session, is_complete=False)

        try:
            written = await store_files(files, session.chunk_dir(chunk_index))
        except BaseException:
            self.registry.release_chunk(session, chunk_index)
            raise
        logger.info(
            "Chunk stored",
            extra={
                "session_id": session_id,
                "chunk_index": chunk_index,
                "total_chunks": total_chunks,
                "file_count": len(written),
            },
        )

        return await self.registry.register_chunk(session_id, chunk_index, total_chunks)
