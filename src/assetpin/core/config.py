"""Configuration management for AssetPin Engine."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "assetpin-engine"
    SERVICE_VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8020
    LOG_LEVEL: str = "INFO"

    # Local asset layout
    ASSETS_ROOT: str = "./assetsfolder"

    # Upload Constraints
    MAX_FILE_SIZE_BYTES: int = 2 * 1024 * 1024 * 1024  # 2 GiB per file

    # Object Store Configuration
    STORAGE_BACKEND: str = "s3"  # "s3" or "gcs"

    # S3-compatible pinning gateway (Filebase by default)
    S3_ENDPOINT_URL: str = "https://s3.filebase.com"
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_BUCKET_NAME: str = ""
    S3_PART_SIZE_MB: int = 8

    # Google Cloud Storage
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    GCS_CHUNK_SIZE_MB: int = 8  # must be a multiple of 256 KiB

    # Archive packing
    CAR_CHUNK_SIZE_BYTES: int = 1024 * 1024
    CAR_MAX_LINKS: int = 1024
    LINK_SCHEME: str = "ipfs"

    # Metadata rewriting: "abort" stops the batch on the first bad record, "skip" continues
    METADATA_ERROR_POLICY: str = "abort"

    # Pipeline / progress
    FOLDER_CONCURRENCY: int = 10
    PROGRESS_INTERVAL_SECONDS: float = 1.0
    SSE_KEEPALIVE_SECONDS: float = 15.0
    SUBSCRIBER_QUEUE_SIZE: int = 1000

    # Comma-separated list of allowed origins, empty = no CORS headers
    CORS_ORIGINS: str = ""

    @property
    def assets_root(self) -> Path:
        """Resolve ASSETS_ROOT to an absolute path."""
        return Path(self.ASSETS_ROOT).resolve()

    @property
    def temp_root(self) -> Path:
        """Directory holding in-flight chunk data."""
        return self.assets_root / "temp"

    @property
    def s3_part_size_bytes(self) -> int:
        """Convert S3_PART_SIZE_MB to bytes."""
        return self.S3_PART_SIZE_MB * 1024 * 1024

    @property
    def gcs_chunk_size_bytes(self) -> int:
        """Convert GCS_CHUNK_SIZE_MB to bytes."""
        return self.GCS_CHUNK_SIZE_MB * 1024 * 1024

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def expose_stack_traces(self) -> bool:
        """Include stack traces in 500 responses only for development environments."""
        return self.ENV in ("local", "development")


# Singleton settings instance
settings = Settings()
