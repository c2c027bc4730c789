"""Application-scoped service container and FastAPI dependency getters."""

import logging
from typing import Optional

from fastapi import Request

from assetpin.core.config import Settings
from assetpin.metadata.rewriter import MetadataRewriter
from assetpin.packing.car import ArchivePacker
from assetpin.pipeline.orchestrator import AssetPipeline
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.sessions.merger import ChunkMerger, FolderAllocator
from assetpin.sessions.receiver import ChunkReceiver
from assetpin.sessions.registry import SessionRegistry
from assetpin.storage.base import ObjectStore, ObjectStoreUploader
from assetpin.storage.factory import get_object_store

logger = logging.getLogger(__name__)


class AppState:
    """Everything with process lifetime: the session registry, the progress
    topics and the pipeline components wired to them.

    The object store is built on first use so that the service can start
    (and answer health checks) before storage credentials are valid.
    """

    def __init__(self, settings: Settings, store: Optional[ObjectStore] = None):
        self.settings = settings
        self.broadcaster = ProgressBroadcaster(max_queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
        self.registry = SessionRegistry(settings.temp_root)
        self.allocator = FolderAllocator(settings.assets_root)
        self.receiver = ChunkReceiver(self.registry, settings.MAX_FILE_SIZE_BYTES)
        self.merger = ChunkMerger(self.registry, self.allocator, self.broadcaster)
        self.packer = ArchivePacker(
            self.broadcaster,
            chunk_size=settings.CAR_CHUNK_SIZE_BYTES,
            max_links=settings.CAR_MAX_LINKS,
        )
        self.rewriter = MetadataRewriter(
            self.broadcaster,
            scheme=settings.LINK_SCHEME,
            error_policy=settings.METADATA_ERROR_POLICY,
        )
        self._store = store
        self._pipeline: Optional[AssetPipeline] = None

    def get_pipeline(self) -> AssetPipeline:
        """Build the pipeline on first use.

        Raises:
            ValueError: If the object store is not configured
        """
        if self._pipeline is None:
            store = self._store or get_object_store(self.settings)
            logger.info("Object store ready", extra={"backend": store.get_backend_name()})
            uploader = ObjectStoreUploader(
                store,
                self.broadcaster,
                interval_seconds=self.settings.PROGRESS_INTERVAL_SECONDS,
            )
            self._pipeline = AssetPipeline(
                registry=self.registry,
                packer=self.packer,
                uploader=uploader,
                rewriter=self.rewriter,
                broadcaster=self.broadcaster,
                assets_root=self.settings.assets_root,
                folder_concurrency=self.settings.FOLDER_CONCURRENCY,
                allocator=self.allocator,
            )
        return self._pipeline


def get_state(request: Request) -> AppState:
    return request.app.state.assetpin
