"""Object store selection."""

from assetpin.core.config import Settings
from assetpin.storage.base import ObjectStore


def get_object_store(settings: Settings) -> ObjectStore:
    """Build the object store named by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend is unknown or not configured
    """
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "s3":
        from assetpin.storage.s3 import S3ObjectStore

        return S3ObjectStore(
            bucket=settings.S3_BUCKET_NAME,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            part_size=settings.s3_part_size_bytes,
        )

    if backend == "gcs":
        from assetpin.storage.gcs import GCSObjectStore

        return GCSObjectStore(
            bucket_name=settings.GCS_BUCKET_NAME,
            project_id=settings.GCP_PROJECT_ID,
            chunk_size=settings.gcs_chunk_size_bytes,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
