"""Sequences packing, uploading and metadata rewriting for one asset folder."""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from assetpin.core.exceptions import AssetPipelineError
from assetpin.core.logging import session_id_context
from assetpin.metadata.rewriter import MetadataRewriter
from assetpin.models.progress import ProgressStage
from assetpin.packing.car import ArchivePacker
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.sessions.merger import ChunkMerger, FolderAllocator, numeric_folders
from assetpin.sessions.receiver import IMAGES, METADATA, IncomingFile, store_files
from assetpin.sessions.registry import SessionRegistry, UploadSession
from assetpin.storage.base import ObjectStoreUploader

logger = logging.getLogger(__name__)


class AssetSource(ABC):
    """Where the asset folder for a pipeline run comes from."""

    @abstractmethod
    async def resolve(self) -> Path:
        """Return the asset folder holding images/ and metadata/."""
        pass


class ExistingFolderSource(AssetSource):
    """A numbered folder that is already on disk."""

    def __init__(self, folder: Path):
        self.folder = Path(folder)

    async def resolve(self) -> Path:
        return self.folder


class ChunkMergeSource(AssetSource):
    """The folder produced by merging a completed chunked session."""

    def __init__(self, session: UploadSession, merger: ChunkMerger):
        self.session = session
        self.merger = merger

    async def resolve(self) -> Path:
        return await self.merger.merge(self.session)


class DirectUploadSource(AssetSource):
    """Files from a single non-chunked request, written into a fresh folder."""

    def __init__(self, files: list[IncomingFile], allocator: FolderAllocator):
        self.files = files
        self.allocator = allocator

    async def resolve(self) -> Path:
        folder = await asyncio.to_thread(self.allocator.allocate)
        try:
            for category in (IMAGES, METADATA):
                (folder / category).mkdir(exist_ok=True)
            await store_files(self.files, folder)
        except BaseException:
            await asyncio.to_thread(self.allocator.discard, folder)
            raise
        return folder


@dataclass(frozen=True)
class PipelineResult:
    """Root CIDs and store tags of one processed folder."""

    folder_id: str
    images_root_cid: str
    metadata_root_cid: str
    images_etag: Optional[str] = None
    metadata_etag: Optional[str] = None


def object_key(folder_id: str, category: str, root_cid: str) -> str:
    return f"{folder_id}-{category}-{root_cid}.car"


class AssetPipeline:
    """Runs merge, pack, upload and rewrite stages strictly in order.

    Images are packed and uploaded first because metadata records link to
    the images root CID; metadata is packed only after it has been rewritten.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        packer: ArchivePacker,
        uploader: ObjectStoreUploader,
        rewriter: MetadataRewriter,
        broadcaster: ProgressBroadcaster,
        assets_root: Path,
        folder_concurrency: int = 10,
        allocator: Optional[FolderAllocator] = None,
    ):
        self.registry = registry
        self.packer = packer
        self.uploader = uploader
        self.rewriter = rewriter
        self.broadcaster = broadcaster
        self.assets_root = Path(assets_root)
        self.folder_concurrency = folder_concurrency
        self.allocator = allocator or FolderAllocator(self.assets_root)

    def _car_path(self, folder: Path, category: str) -> Path:
        return self.assets_root / f"{folder.name}-{category}.car"

    async def _pack_and_upload(self, folder: Path, category: str, session_id: str):
        archive = await self.packer.pack(
            folder / category, self._car_path(folder, category), session_id, category
        )
        root_cid = str(archive.root_cid)
        self.registry.last_root_cid = root_cid
        receipt = await self.uploader.upload(
            archive.local_path, object_key(folder.name, category, root_cid), session_id, category
        )
        return root_cid, receipt

    async def run(self, source: AssetSource, session_id: str) -> PipelineResult:
        """Process one asset folder end to end.

        Raises:
            AssetPipelineError: From whichever stage failed; nothing is retried
        """
        token = session_id_context.set(session_id)
        folder: Optional[Path] = None
        try:
            folder = await source.resolve()
            logger.info("Processing asset folder", extra={"folder": folder.name})

            images_root_cid, images_receipt = await self._pack_and_upload(folder, IMAGES, session_id)
            await self.rewriter.rewrite(folder / METADATA, images_root_cid, session_id)
            metadata_root_cid, metadata_receipt = await self._pack_and_upload(
                folder, METADATA, session_id
            )

            await asyncio.to_thread(shutil.rmtree, folder)
        except AssetPipelineError:
            raise
        except Exception as e:
            logger.error(
                "Unexpected pipeline failure",
                extra={"error": str(e)},
                exc_info=True,
            )
            error = AssetPipelineError(f"Pipeline failed for session {session_id}: {e}")
            self.broadcaster.emit_error(session_id, error)
            raise error from e
        finally:
            if folder is not None:
                self.allocator.release(folder)
            session_id_context.reset(token)

        logger.info(
            "Asset folder processed",
            extra={
                "session_id": session_id,
                "folder": folder.name,
                "images_root_cid": images_root_cid,
                "metadata_root_cid": metadata_root_cid,
            },
        )
        self.broadcaster.emit(
            session_id,
            ProgressStage.COMPLETE,
            folder=folder.name,
            imagesRootCID=images_root_cid,
            metadataRootCID=metadata_root_cid,
            lastRootCID=metadata_root_cid,
        )
        return PipelineResult(
            folder_id=folder.name,
            images_root_cid=images_root_cid,
            metadata_root_cid=metadata_root_cid,
            images_etag=images_receipt.etag,
            metadata_etag=metadata_receipt.etag,
        )

    async def process_all_folders(self, session_id: Optional[str] = None) -> list[PipelineResult]:
        """Process every numbered folder under the assets root, a bounded number at a time.

        Folders without an images/ directory are skipped, as are folders a
        merge, direct upload or another batch is still working on. All folders
        are attempted; the first failure is re-raised once the rest have
        finished.
        """
        semaphore = asyncio.Semaphore(self.folder_concurrency)
        folders = []
        for folder in await asyncio.to_thread(numeric_folders, self.assets_root):
            if self.allocator.claim(folder):
                folders.append(folder)
            else:
                logger.info("Skipping folder in flight", extra={"folder": folder.name})

        async def process(folder: Path) -> Optional[PipelineResult]:
            async with semaphore:
                if not (folder / IMAGES).is_dir():
                    logger.warning("Skipping folder without images", extra={"folder": folder.name})
                    self.allocator.release(folder)
                    return None
                return await self.run(
                    ExistingFolderSource(folder), session_id or f"folder-{folder.name}"
                )

        outcomes = await asyncio.gather(*(process(f) for f in folders), return_exceptions=True)

        results: list[PipelineResult] = []
        errors: list[BaseException] = []
        for folder, outcome in zip(folders, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Error processing folder",
                    extra={"folder": folder.name, "error": str(outcome)},
                )
                errors.append(outcome)
            elif outcome is not None:
                results.append(outcome)

        if errors:
            raise errors[0]
        return results
