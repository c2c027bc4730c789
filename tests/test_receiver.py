"""Tests for chunk reception and file placement."""

import asyncio
import io
import threading
from unittest.mock import patch

import pytest

from assetpin.core.exceptions import (
    InvalidChunk,
    InvalidSessionId,
    PayloadTooLarge,
    SessionMismatch,
    ValidationError,
)
from assetpin.sessions import receiver as receiver_module
from assetpin.sessions.merger import ChunkMerger, FolderAllocator
from assetpin.sessions.receiver import (
    IMAGES,
    METADATA,
    ChunkReceiver,
    IncomingFile,
    classify,
    safe_file_name,
)


def incoming(name: str, content: bytes, content_type: str) -> IncomingFile:
    return IncomingFile(file_name=name, content_type=content_type, stream=io.BytesIO(content))


def test_classify():
    """Media types go to images, everything else to metadata."""
    assert classify("image/png") == IMAGES
    assert classify("IMAGE/JPEG") == IMAGES
    assert classify("video/mp4") == IMAGES
    assert classify("application/json") == METADATA
    assert classify("text/plain") == METADATA
    assert classify("") == METADATA


def test_safe_file_name_strips_directories():
    assert safe_file_name("../../etc/passwd") == "passwd"
    assert safe_file_name("..\\..\\boot.ini") == "boot.ini"
    assert safe_file_name("cat.png") == "cat.png"


@pytest.mark.parametrize("name", ["", ".", "..", "dir/.."])
def test_safe_file_name_rejects_empty(name):
    with pytest.raises(ValidationError):
        safe_file_name(name)


def test_measure_seeks_spooled_stream():
    f = incoming("a.bin", b"12345", "application/octet-stream")
    f.stream.read(2)

    assert f.measure() == 5
    assert f.stream.tell() == 0


class TestChunkReceiver:
    """Tests for ChunkReceiver."""

    @pytest.mark.asyncio
    async def test_files_placed_by_category(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)

        registration = await receiver.receive(
            "sess",
            1,
            2,
            [
                incoming("cat.png", b"png-bytes", "image/png"),
                incoming("clip.mp4", b"mp4-bytes", "video/mp4"),
                incoming("cat.json", b'{"name": "cat"}', "application/json"),
            ],
        )

        chunk_dir = registry.temp_root / "sess" / "1"
        assert (chunk_dir / "images" / "cat.png").read_bytes() == b"png-bytes"
        assert (chunk_dir / "images" / "clip.mp4").read_bytes() == b"mp4-bytes"
        assert (chunk_dir / "metadata" / "cat.json").read_text() == '{"name": "cat"}'
        assert registration.is_complete is False
        assert registration.session.received_chunks == {1}

    @pytest.mark.asyncio
    async def test_last_chunk_completes(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)

        first = await receiver.receive("sess", 0, 2, [incoming("a.json", b"{}", "application/json")])
        second = await receiver.receive("sess", 1, 2, [incoming("b.json", b"{}", "application/json")])

        assert first.is_complete is False
        assert second.is_complete is True

    @pytest.mark.asyncio
    async def test_oversize_file_rejects_whole_chunk(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=4)

        with pytest.raises(PayloadTooLarge) as exc_info:
            await receiver.receive(
                "sess",
                0,
                1,
                [
                    incoming("ok.json", b"{}", "application/json"),
                    incoming("big.png", b"0123456789", "image/png"),
                ],
            )

        assert exc_info.value.file_name == "big.png"
        assert exc_info.value.size_bytes == 10
        assert "sess" not in registry
        assert not (registry.temp_root / "sess").exists()

    @pytest.mark.asyncio
    async def test_mismatched_total_writes_nothing(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)
        await receiver.receive("sess", 0, 3, [incoming("a.json", b"{}", "application/json")])

        with pytest.raises(SessionMismatch):
            await receiver.receive("sess", 1, 4, [incoming("b.json", b"{}", "application/json")])

        assert not (registry.temp_root / "sess" / "1").exists()

    @pytest.mark.asyncio
    async def test_index_out_of_range_writes_nothing(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)

        with pytest.raises(InvalidChunk):
            await receiver.receive("sess", 5, 2, [incoming("a.json", b"{}", "application/json")])

        assert not (registry.temp_root / "sess" / "5").exists()
        assert "sess" not in registry

    @pytest.mark.asyncio
    async def test_out_of_range_does_not_fix_total(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)
        with pytest.raises(InvalidChunk):
            await receiver.receive("sess", 5, 3, [incoming("a.json", b"{}", "application/json")])

        registration = await receiver.receive(
            "sess", 5, 6, [incoming("a.json", b"{}", "application/json")]
        )

        assert registration.session.total_chunks == 6

    @pytest.mark.asyncio
    async def test_path_traversal_stays_in_chunk_dir(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)

        await receiver.receive(
            "sess", 0, 1, [incoming("../../escape.json", b"{}", "application/json")]
        )

        assert (registry.temp_root / "sess" / "0" / "metadata" / "escape.json").exists()
        assert not (registry.temp_root / "escape.json").exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", ["..", "../..", "a/b"])
    async def test_unsafe_session_id_writes_nothing(self, registry, session_id):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)
        registry.temp_root.mkdir(parents=True)

        with pytest.raises(InvalidSessionId):
            await receiver.receive(session_id, 0, 1, [incoming("a.png", b"png", "image/png")])

        assert len(registry) == 0
        assert list(registry.temp_root.parent.rglob("a.png")) == []


class TestDuplicateChunks:
    """Tests for repeated delivery of the same chunk."""

    @pytest.mark.asyncio
    async def test_duplicate_after_receipt_leaves_files(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)
        await receiver.receive("sess", 0, 2, [incoming("a.png", b"original", "image/png")])

        again = await receiver.receive("sess", 0, 2, [incoming("a.png", b"", "image/png")])

        assert again.is_complete is False
        assert (registry.temp_root / "sess" / "0" / "images" / "a.png").read_bytes() == b"original"

    @pytest.mark.asyncio
    async def test_duplicate_after_completion_leaves_files(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)
        await receiver.receive("sess", 0, 1, [incoming("a.png", b"original", "image/png")])

        again = await receiver.receive("sess", 0, 1, [incoming("a.png", b"", "image/png")])

        assert again.is_complete is False
        assert (registry.temp_root / "sess" / "0" / "images" / "a.png").read_bytes() == b"original"

    @pytest.mark.asyncio
    async def test_concurrent_last_chunk_merges_intact(self, registry, assets_root, broadcaster):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1_000_000)
        payload = b"x" * 100_000
        await receiver.receive("sess", 0, 2, [incoming("a.json", b"{}", "application/json")])

        writes = []
        resume = threading.Event()
        original_write = receiver_module.write_stream

        def paused_write(stream, target_path):
            writes.append(target_path)
            resume.wait(5)
            original_write(stream, target_path)

        with patch("assetpin.sessions.receiver.write_stream", side_effect=paused_write):
            first = asyncio.create_task(
                receiver.receive("sess", 1, 2, [incoming("a.png", payload, "image/png")])
            )
            while not writes:
                await asyncio.sleep(0.01)

            duplicate = await receiver.receive(
                "sess", 1, 2, [incoming("a.png", payload, "image/png")]
            )
            resume.set()
            registration = await first

        assert len(writes) == 1
        assert duplicate.is_complete is False
        assert registration.is_complete is True

        folder = await ChunkMerger(registry, FolderAllocator(assets_root), broadcaster).merge(
            registration.session
        )

        assert (folder / "images" / "a.png").read_bytes() == payload
        assert not (registry.temp_root / "sess").exists()

    @pytest.mark.asyncio
    async def test_failed_write_allows_retry(self, registry):
        receiver = ChunkReceiver(registry, max_file_size_bytes=1024)

        with patch("assetpin.sessions.receiver.write_stream", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await receiver.receive("sess", 0, 1, [incoming("a.png", b"png", "image/png")])

        registration = await receiver.receive("sess", 0, 1, [incoming("a.png", b"png", "image/png")])

        assert registration.is_complete is True
        assert (registry.temp_root / "sess" / "0" / "images" / "a.png").read_bytes() == b"png"
