"""Object store interface and the progress-reporting archive uploader."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from assetpin.core.exceptions import UploadError
from assetpin.models.progress import ProgressEvent, ProgressStage
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.storage.progress import TransferProgress, TransferSnapshot

logger = logging.getLogger(__name__)

CAR_CONTENT_TYPE = "application/vnd.ipld.car"
CAR_OBJECT_METADATA = {"import": "car"}


@dataclass(frozen=True)
class UploadReceipt:
    """What the store reports back for a finished upload."""

    key: str
    etag: Optional[str]
    size_bytes: int


class ObjectStore(ABC):
    """Abstract base class for remote archive stores."""

    @abstractmethod
    def put_archive(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        """Stream a local archive to the store.

        Blocking; called from a worker thread. Implementations must call
        ``progress.advance`` as bytes leave the process.

        Args:
            car_path: Local CAR file
            key: Object key to store it under
            progress: Transfer bookkeeping for this upload

        Returns:
            Store-assigned integrity tag (ETag or equivalent)
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass


class ObjectStoreUploader:
    """Uploads archives through an ObjectStore and reports progress.

    The local archive is removed after every attempt, successful or not.
    Failures are not retried here.
    """

    def __init__(
        self,
        store: ObjectStore,
        broadcaster: ProgressBroadcaster,
        interval_seconds: float = 1.0,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.interval_seconds = interval_seconds

    def _transfer(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        etag = self.store.put_archive(car_path, key, progress)
        progress.finish()
        return etag

    async def upload(
        self,
        car_path: Path,
        key: str,
        session_id: str,
        file_type: Optional[str] = None,
    ) -> UploadReceipt:
        """Upload one archive.

        Raises:
            UploadError: If the archive cannot be read or the store rejects it
        """
        loop = asyncio.get_running_loop()
        car_path = Path(car_path)

        def report(snapshot: TransferSnapshot) -> None:
            event = ProgressEvent(
                session_id=session_id,
                stage=ProgressStage.UPLOADING,
                file_type=file_type,
                payload=snapshot.as_payload(),
            )
            self.broadcaster.publish_threadsafe(loop, event)

        try:
            size_bytes = car_path.stat().st_size
            progress = TransferProgress(size_bytes, report, self.interval_seconds)
            logger.info(
                "Uploading CAR file",
                extra={
                    "key": key,
                    "size_bytes": size_bytes,
                    "backend": self.store.get_backend_name(),
                },
            )
            etag = await asyncio.to_thread(self._transfer, car_path, key, progress)
        except Exception as e:
            logger.error(
                "Failed to upload CAR file",
                extra={"key": key, "car_path": str(car_path), "error": str(e)},
                exc_info=True,
            )
            error = e if isinstance(e, UploadError) else UploadError(f"Failed to upload {key}: {e}")
            self.broadcaster.emit_error(session_id, error, file_type=file_type)
            if error is e:
                raise
            raise error from e
        finally:
            try:
                car_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(
                    "Failed to delete CAR file",
                    extra={"car_path": str(car_path), "error": str(cleanup_error)},
                )

        logger.info("CAR file uploaded", extra={"key": key, "etag": etag})
        self.broadcaster.emit(
            session_id,
            ProgressStage.COMPLETE,
            file_type=file_type,
            key=key,
            etag=etag,
            sizeBytes=size_bytes,
        )
        return UploadReceipt(key=key, etag=etag, size_bytes=size_bytes)
