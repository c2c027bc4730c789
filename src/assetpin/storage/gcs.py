"""Google Cloud Storage object store."""

import logging
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from google.cloud import storage

from assetpin.storage.base import CAR_CONTENT_TYPE, CAR_OBJECT_METADATA, ObjectStore
from assetpin.storage.progress import TransferProgress

logger = logging.getLogger(__name__)

# Resumable upload chunks must be multiples of 256 KiB
CHUNK_ALIGNMENT = 256 * 1024


class ProgressReader:
    """File wrapper that reports every read to a callback."""

    def __init__(self, fileobj: BinaryIO, on_read: Callable[[int], None]):
        self._fileobj = fileobj
        self._on_read = on_read

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        if data:
            self._on_read(len(data))
        return data

    def __getattr__(self, name):
        return getattr(self._fileobj, name)


class GCSObjectStore(ObjectStore):
    """Stores CAR archives in a GCS bucket using resumable uploads."""

    def __init__(
        self,
        bucket_name: str,
        project_id: Optional[str] = None,
        chunk_size: int = 8 * 1024 * 1024,
    ):
        if chunk_size % CHUNK_ALIGNMENT:
            raise ValueError("GCS chunk_size must be a multiple of 256 KiB")
        self.bucket_name = bucket_name
        self.project_id = project_id
        self.chunk_size = chunk_size
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=self.project_id or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    def get_backend_name(self) -> str:
        return "gcs"

    def put_archive(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        bucket = self._get_bucket()
        blob = bucket.blob(key, chunk_size=self.chunk_size)
        blob.metadata = dict(CAR_OBJECT_METADATA)

        with open(car_path, "rb") as f:
            blob.upload_from_file(
                ProgressReader(f, progress.advance),
                size=progress.total_bytes,
                content_type=CAR_CONTENT_TYPE,
            )

        logger.debug(
            "GCS upload finished",
            extra={"bucket": self.bucket_name, "key": key, "generation": blob.generation},
        )
        return blob.etag or blob.md5_hash
