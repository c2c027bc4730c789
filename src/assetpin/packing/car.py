"""Pack a directory into a CARv1 archive and derive its root CID."""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import dag_cbor
from multiformats import CID, varint

from assetpin.core.exceptions import PackingError
from assetpin.models.progress import ProgressStage
from assetpin.packing import unixfs
from assetpin.progress.broadcaster import ProgressBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_MAX_LINKS = 1024


@dataclass(frozen=True)
class ArchiveResult:
    """A packed archive on local disk and the CID of its root node."""

    local_path: Path
    root_cid: CID
    file_count: int = 0
    size_bytes: int = 0


class CarWriter:
    """Writes blocks in CARv1 framing.

    The header names the root, which is only known once every block has
    been written, so a placeholder of identical length is written first and
    replaced by ``finalize``.
    """

    def __init__(self, fh: BinaryIO):
        self.fh = fh
        self._header_length = self._write_header(unixfs.placeholder_cid())

    def _write_header(self, root: CID) -> int:
        header = dag_cbor.encode({"version": 1, "roots": [root]})
        framed = varint.encode(len(header)) + header
        self.fh.write(framed)
        return len(framed)

    def put(self, cid: CID, block: bytes) -> None:
        cid_bytes = bytes(cid)
        self.fh.write(varint.encode(len(cid_bytes) + len(block)))
        self.fh.write(cid_bytes)
        self.fh.write(block)

    def finalize(self, root: CID) -> None:
        self.fh.seek(0)
        if self._write_header(root) != self._header_length:
            raise PackingError(f"Root CID {root} does not fit the reserved CAR header")
        self.fh.seek(0, os.SEEK_END)


def _sort_key(entry: os.DirEntry) -> bytes:
    return os.fsencode(entry.name)


class ArchivePacker:
    """Serializes a folder into a content-addressed CAR archive.

    Entries are visited in byte order of their names, files are split into
    fixed-size raw leaves and linked through balanced UnixFS trees, and the
    folder itself becomes the root directory node (no wrapping directory).
    Identical names and bytes therefore always produce the same root CID.
    """

    def __init__(
        self,
        broadcaster: Optional[ProgressBroadcaster] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_links: int = DEFAULT_MAX_LINKS,
    ):
        if chunk_size < 1 or max_links < 2:
            raise ValueError("chunk_size must be positive and max_links at least 2")
        self.broadcaster = broadcaster
        self.chunk_size = chunk_size
        self.max_links = max_links

    def _pack_file(self, path: Path, writer: CarWriter) -> unixfs.Link:
        leaves: list[unixfs.Link] = []
        with open(path, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk and leaves:
                    break
                cid = unixfs.make_cid(unixfs.RAW, chunk)
                writer.put(cid, chunk)
                leaves.append(unixfs.Link(cid=cid, tsize=len(chunk), content_size=len(chunk)))
                if len(chunk) < self.chunk_size:
                    break

        level = leaves
        while len(level) > 1:
            parents: list[unixfs.Link] = []
            for start in range(0, len(level), self.max_links):
                children = level[start:start + self.max_links]
                block = unixfs.file_node(children)
                cid = unixfs.make_cid(unixfs.DAG_PB, block)
                writer.put(cid, block)
                parents.append(
                    unixfs.Link(
                        cid=cid,
                        tsize=len(block) + sum(child.tsize for child in children),
                        content_size=sum(child.content_size for child in children),
                    )
                )
            level = parents
        return level[0]

    def _pack_directory(self, path: Path, writer: CarWriter, counter: list[int]) -> unixfs.Link:
        entries: list[unixfs.Link] = []
        with os.scandir(path) as it:
            listing = sorted(it, key=_sort_key)
        for entry in listing:
            if entry.is_dir(follow_symlinks=False):
                link = self._pack_directory(Path(entry.path), writer, counter)
            elif entry.is_file(follow_symlinks=False):
                link = self._pack_file(Path(entry.path), writer)
                counter[0] += 1
            else:
                logger.debug("Skipping non-regular entry", extra={"path": entry.path})
                continue
            entries.append(
                unixfs.Link(
                    cid=link.cid,
                    tsize=link.tsize,
                    content_size=link.content_size,
                    name=entry.name,
                )
            )

        block = unixfs.directory_node(entries)
        cid = unixfs.make_cid(unixfs.DAG_PB, block)
        writer.put(cid, block)
        return unixfs.Link(
            cid=cid,
            tsize=len(block) + sum(e.tsize for e in entries),
            content_size=sum(e.content_size for e in entries),
        )

    def pack_sync(self, folder: Path, output_car_path: Path) -> ArchiveResult:
        """Blocking implementation of ``pack``."""
        folder = Path(folder)
        output_car_path = Path(output_car_path)
        if not folder.is_dir():
            raise PackingError(f"Cannot pack {folder}: not a directory")

        counter = [0]
        try:
            output_car_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_car_path, "wb") as fh:
                writer = CarWriter(fh)
                root = self._pack_directory(folder, writer, counter)
                writer.finalize(root.cid)
            size_bytes = output_car_path.stat().st_size
        except OSError as e:
            output_car_path.unlink(missing_ok=True)
            raise PackingError(f"Failed to pack {folder}: {e}") from e
        except PackingError:
            output_car_path.unlink(missing_ok=True)
            raise

        return ArchiveResult(
            local_path=output_car_path,
            root_cid=root.cid,
            file_count=counter[0],
            size_bytes=size_bytes,
        )

    async def pack(
        self,
        folder: Path,
        output_car_path: Path,
        session_id: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> ArchiveResult:
        """Pack a folder into ``output_car_path`` off the event loop.

        Raises:
            PackingError: If the folder is missing or any read/write fails
        """
        if self.broadcaster and session_id:
            self.broadcaster.emit(
                session_id, ProgressStage.PACKAGING, file_type=file_type, status="started"
            )

        try:
            result = await asyncio.to_thread(self.pack_sync, folder, output_car_path)
        except PackingError as e:
            logger.error(
                "Failed to create CAR file",
                extra={"folder": str(folder), "error": str(e)},
            )
            if self.broadcaster and session_id:
                self.broadcaster.emit_error(session_id, e, file_type=file_type)
            raise

        logger.info(
            "CAR file created",
            extra={
                "folder": str(folder),
                "car_path": str(result.local_path),
                "root_cid": str(result.root_cid),
                "file_count": result.file_count,
                "size_bytes": result.size_bytes,
            },
        )
        if self.broadcaster and session_id:
            self.broadcaster.emit(
                session_id,
                ProgressStage.PACKAGING,
                file_type=file_type,
                status="done",
                rootCID=str(result.root_cid),
                fileCount=result.file_count,
                sizeBytes=result.size_bytes,
            )
        return result
