"""Tests for settings and object store selection."""

import pytest

from assetpin.core.config import Settings
from assetpin.storage.factory import get_object_store
from assetpin.storage.gcs import GCSObjectStore
from assetpin.storage.s3 import S3ObjectStore


def test_defaults(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    settings = Settings(_env_file=None)

    assert settings.PORT == 8020
    assert settings.STORAGE_BACKEND == "s3"
    assert settings.S3_ENDPOINT_URL == "https://s3.filebase.com"
    assert settings.METADATA_ERROR_POLICY == "abort"
    assert settings.FOLDER_CONCURRENCY == 10
    assert settings.s3_part_size_bytes == 8 * 1024 * 1024
    assert settings.cors_origins == []


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", "pins")
    monkeypatch.setenv("FOLDER_CONCURRENCY", "3")

    settings = Settings(_env_file=None)

    assert settings.S3_BUCKET_NAME == "pins"
    assert settings.FOLDER_CONCURRENCY == 3


def test_paths(tmp_path):
    settings = Settings(_env_file=None, ASSETS_ROOT=str(tmp_path / "assets"))

    assert settings.assets_root == (tmp_path / "assets").resolve()
    assert settings.temp_root == settings.assets_root / "temp"


def test_cors_origins_parsing():
    settings = Settings(_env_file=None, CORS_ORIGINS="http://a.test, http://b.test ,")

    assert settings.cors_origins == ["http://a.test", "http://b.test"]


@pytest.mark.parametrize("env,expected", [("local", True), ("development", True), ("production", False)])
def test_expose_stack_traces(env, expected):
    assert Settings(_env_file=None, ENV=env).expose_stack_traces is expected


class TestObjectStoreFactory:
    """Tests for get_object_store."""

    def test_s3_backend(self):
        settings = Settings(
            _env_file=None,
            STORAGE_BACKEND="s3",
            S3_BUCKET_NAME="pins",
            S3_ACCESS_KEY_ID="key",
            S3_SECRET_ACCESS_KEY="secret",
        )

        store = get_object_store(settings)

        assert isinstance(store, S3ObjectStore)
        assert store.bucket == "pins"
        assert store.s3_client.meta.endpoint_url == "https://s3.filebase.com"

    def test_s3_backend_requires_bucket(self):
        with pytest.raises(ValueError):
            get_object_store(Settings(_env_file=None, STORAGE_BACKEND="s3", S3_BUCKET_NAME=""))

    def test_gcs_backend(self):
        settings = Settings(_env_file=None, STORAGE_BACKEND="GCS", GCS_BUCKET_NAME="pins")

        store = get_object_store(settings)

        assert isinstance(store, GCSObjectStore)
        assert store.get_backend_name() == "gcs"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown STORAGE_BACKEND"):
            get_object_store(Settings(_env_file=None, STORAGE_BACKEND="ftp"))
