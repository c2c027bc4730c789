"""In-memory registry of chunked upload sessions."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from assetpin.core.exceptions import (
    InvalidChunk,
    InvalidSessionId,
    SessionMismatch,
    UnknownSession,
)

logger = logging.getLogger(__name__)

# Session ids name directories under the temp root
SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")


def validate_session_id(session_id: Optional[str]) -> str:
    """Return the session id if it is a plain directory name.

    Raises:
        InvalidSessionId: For empty ids, path separators, dots or other characters
    """
    if session_id is None or not SESSION_ID_PATTERN.fullmatch(session_id):
        raise InvalidSessionId(session_id or "")
    return session_id


@dataclass
class UploadSession:
    """State of one chunked upload."""

    session_id: str
    temp_root: Path
    total_chunks: int
    received_chunks: set[int] = field(default_factory=set)
    # Claimed by a request that is still writing the chunk's files
    pending_chunks: set[int] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def progress_percent(self) -> float:
        """Share of chunks received, 0-100."""
        return round(len(self.received_chunks) / self.total_chunks * 100, 2)

    def chunk_dir(self, chunk_index: int) -> Path:
        return self.temp_root / str(chunk_index)


@dataclass(frozen=True)
class ChunkRegistration:
    """Result of registering one chunk."""

    session: UploadSession
    is_complete: bool


class SessionRegistry:
    """Tracks in-flight chunked upload sessions.

    Owned by the application state and injected into the receiver, merger
    and pipeline. Sessions only live in process memory.
    """

    def __init__(self, temp_root: Path):
        self.temp_root = Path(temp_root)
        self._sessions: Dict[str, UploadSession] = {}
        # Advisory only, read for logging and responses
        self.last_root_cid: Optional[str] = None

    def open(self, session_id: str, total_chunks: int) -> UploadSession:
        """Return the session, creating it on first sight.

        Raises:
            InvalidSessionId: If the id is not a plain directory name
            InvalidChunk: If total_chunks is not positive
            SessionMismatch: If the session exists with a different chunk count
        """
        validate_session_id(session_id)
        if total_chunks < 1:
            raise InvalidChunk(f"Total chunk count must be at least 1, got {total_chunks}")

        session = self._sessions.get(session_id)
        if session is None:
            session = UploadSession(
                session_id=session_id,
                temp_root=self.temp_root / session_id,
                total_chunks=total_chunks,
            )
            self._sessions[session_id] = session
            logger.info(
                "Upload session created",
                extra={"session_id": session_id, "total_chunks": total_chunks},
            )
        elif session.total_chunks != total_chunks:
            raise SessionMismatch(session_id, session.total_chunks, total_chunks)
        return session

    async def register_chunk(
        self, session_id: str, chunk_index: int, total_chunks: int
    ) -> ChunkRegistration:
        """Record the arrival of one chunk.

        ``is_complete`` is True for exactly one call per session: the one that
        brings the received count up to the total.
        """
        session = self.open(session_id, total_chunks)
        if not 0 <= chunk_index < session.total_chunks:
            raise InvalidChunk(
                f"Chunk index {chunk_index} out of range for {session.total_chunks} chunks"
            )

        async with session.lock:
            session.pending_chunks.discard(chunk_index)
            if session.completed:
                return ChunkRegistration(session=session, is_complete=False)

            session.received_chunks.add(chunk_index)
            if len(session.received_chunks) == session.total_chunks:
                session.completed = True
                logger.info(
                    "All chunks received",
                    extra={"session_id": session_id, "total_chunks": session.total_chunks},
                )
                return ChunkRegistration(session=session, is_complete=True)

        logger.debug(
            "Chunk registered",
            extra={
                "session_id": session_id,
                "chunk_index": chunk_index,
                "received": len(session.received_chunks),
                "total_chunks": session.total_chunks,
            },
        )
        return ChunkRegistration(session=session, is_complete=False)

    async def claim_chunk(self, session: UploadSession, chunk_index: int) -> bool:
        """Reserve a chunk index for writing.

        Returns False when the chunk is already received, is being written by
        another request, or the session has completed. Only the claimant may
        write the chunk's files.
        """
        async with session.lock:
            if (
                session.completed
                or chunk_index in session.received_chunks
                or chunk_index in session.pending_chunks
            ):
                return False
            session.pending_chunks.add(chunk_index)
            return True

    def release_chunk(self, session: UploadSession, chunk_index: int) -> None:
        """Give up a claim whose write failed so a retry can store the chunk."""
        session.pending_chunks.discard(chunk_index)

    def get(self, session_id: str) -> UploadSession:
        """Look up a session.

        Raises:
            UnknownSession: If the session id was never registered
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    def remove(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Upload session removed", extra={"session_id": session_id})

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
