"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from assetpin.core.config import Settings
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.sessions.registry import SessionRegistry
from assetpin.storage.base import ObjectStore
from assetpin.storage.progress import TransferProgress


class FakeObjectStore(ObjectStore):
    """In-memory object store that keeps every uploaded archive."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.objects: dict[str, bytes] = {}
        self.keys: list[str] = []
        self.fail_with = fail_with

    def put_archive(self, car_path: Path, key: str, progress: TransferProgress) -> Optional[str]:
        if self.fail_with is not None:
            raise self.fail_with
        data = Path(car_path).read_bytes()
        self.objects[key] = data
        self.keys.append(key)
        progress.advance(len(data))
        return f'"etag-{len(self.keys)}"'

    def get_backend_name(self) -> str:
        return "fake"


@pytest.fixture
def assets_root(tmp_path):
    root = tmp_path / "assets"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(assets_root):
    """Settings pointing at a throwaway assets folder."""
    return Settings(
        ENV="test",
        ASSETS_ROOT=str(assets_root),
        STORAGE_BACKEND="s3",
        S3_BUCKET_NAME="test-bucket",
        PROGRESS_INTERVAL_SECONDS=0.0,
    )


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster(max_queue_size=100)


@pytest.fixture
def registry(assets_root):
    return SessionRegistry(assets_root / "temp")


@pytest.fixture
def app(test_settings, fake_store):
    from assetpin.main import create_app

    return create_app(test_settings, store=fake_store)


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


def make_asset_folder(folder: Path, images: dict[str, bytes], metadata: dict[str, str]) -> Path:
    """Lay out an asset folder with images/ and metadata/ subfolders."""
    (folder / "images").mkdir(parents=True, exist_ok=True)
    (folder / "metadata").mkdir(parents=True, exist_ok=True)
    for name, data in images.items():
        (folder / "images" / name).write_bytes(data)
    for name, text in metadata.items():
        (folder / "metadata" / name).write_text(text, encoding="utf-8")
    return folder


def drain(subscription) -> list:
    """Every event currently queued on a subscription."""
    events = []
    while not subscription._queue.empty():
        events.append(subscription._queue.get_nowait())
    return events
