"""S3-compatible object store (Filebase, MinIO, AWS)."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError
from tenacity import (
    after_log,
    before_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from assetpin.core.exceptions import UploadError
from assetpin.storage.base import CAR_OBJECT_METADATA, ObjectStore
from assetpin.storage.progress import TransferProgress

logger = logging.getLogger(__name__)

MIN_PART_SIZE = 5 * 1024 * 1024

RETRYABLE_ERROR_CODES = {
    "RequestTimeout",
    "RequestTimeoutException",
    "PriorRequestNotComplete",
    "ThrottlingException",
    "ThrottledException",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "InternalError",
}


def is_retryable_error(exception: BaseException) -> bool:
    """Check if a part request failure is transient.

    Args:
        exception: The exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(exception, ClientError):
        return exception.response.get("Error", {}).get("Code") in RETRYABLE_ERROR_CODES
    return False


class S3ObjectStore(ObjectStore):
    """Stores CAR archives in an S3 bucket.

    Archives up to one part in size go up with a single PUT; larger ones use
    a multipart upload that is aborted if any part fails.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        part_size: int = 8 * 1024 * 1024,
        client: Any = None,
    ):
        """Initialize the S3 store.

        Args:
            bucket: Destination bucket
            endpoint_url: Custom endpoint for S3-compatible providers
            region_name: Signing region
            access_key_id: Access key; falls back to the default credential chain when empty
            secret_access_key: Secret key; falls back to the default credential chain when empty
            part_size: Multipart part size in bytes (at least 5 MiB)
            client: Pre-built boto3 client, mainly for tests
        """
        if not bucket:
            raise ValueError("S3 bucket name not configured")
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes")
        self.bucket = bucket
        self.part_size = part_size
        self.s3_client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region_name or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    def get_backend_name(self) -> str:
        return "s3"

    def put_archive(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        size_bytes = progress.total_bytes
        if size_bytes <= self.part_size:
            return self._put_object(car_path, key, progress)
        return self._multipart_upload(car_path, key, progress)

    def _put_object(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        with open(car_path, "rb") as f:
            body = f.read()
        response = self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            Metadata=CAR_OBJECT_METADATA,
        )
        progress.advance(len(body))
        return response.get("ETag")

    def _multipart_upload(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        mpu = self.s3_client.create_multipart_upload(
            Bucket=self.bucket,
            Key=key,
            Metadata=CAR_OBJECT_METADATA,
        )
        upload_id = mpu["UploadId"]
        parts: List[Dict[str, Any]] = []

        try:
            with open(car_path, "rb") as f:
                part_number = 1
                while True:
                    chunk = f.read(self.part_size)
                    if not chunk:
                        break
                    part = self._upload_part(key, upload_id, part_number, chunk)
                    parts.append({"PartNumber": part_number, "ETag": part["ETag"]})
                    progress.advance(len(chunk))
                    part_number += 1

            response = self.s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception as e:
            logger.error(
                "Multipart upload failed, aborting",
                extra={"key": key, "upload_id": upload_id, "parts_done": len(parts), "error": str(e)},
            )
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket, Key=key, UploadId=upload_id
                )
            except ClientError as abort_error:
                logger.error(
                    "Error aborting multipart upload",
                    extra={"key": key, "upload_id": upload_id, "error": str(abort_error)},
                )
            raise UploadError(f"Multipart upload of {key} failed: {e}") from e

        return response.get("ETag")

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before=before_log(logger, logging.DEBUG),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )
    def _upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> Dict[str, Any]:
        """Upload a single part, retrying transient provider errors."""
        return self.s3_client.upload_part(
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
