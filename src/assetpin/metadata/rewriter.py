"""Inject media links into metadata records."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from assetpin.core.exceptions import MetadataRewriteError
from assetpin.models.progress import ProgressStage
from assetpin.progress.broadcaster import ProgressBroadcaster

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".mp4")
DEFAULT_EXTENSION = ".png"
VIDEO_EXTENSIONS = {".mp4"}
RECORD_SUFFIX = ".json"


class ErrorPolicy(str, Enum):
    """What to do with a record that cannot be rewritten."""

    ABORT = "abort"
    SKIP = "skip"


@dataclass
class RewriteSummary:
    """Outcome of one rewrite pass over a metadata folder."""

    rewritten: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.rewritten) + len(self.failed)


def find_media_extension(base_name: str, images_folder: Path) -> str:
    """First candidate extension with an existing media file, else ``.png``."""
    for extension in MEDIA_EXTENSIONS:
        if (images_folder / f"{base_name}{extension}").exists():
            return extension
    return DEFAULT_EXTENSION


def link_field(extension: str) -> str:
    return "video" if extension in VIDEO_EXTENSIONS else "image"


def rewrite_record(record_path: Path, root_cid: str, images_folder: Path, scheme: str = "ipfs") -> Path:
    """Rewrite one ``<base>.json`` record in place as ``<base>``.

    Returns:
        Path of the rewritten record

    Raises:
        MetadataRewriteError: If the record is unreadable, not JSON, or not a JSON object
    """
    base_name = record_path.name[: -len(RECORD_SUFFIX)]
    try:
        data = json.loads(record_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MetadataRewriteError(
            f"Malformed JSON in {record_path.name}: {e}", file_name=record_path.name
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataRewriteError(
            f"Failed to read {record_path.name}: {e}", file_name=record_path.name
        ) from e

    if not isinstance(data, dict):
        raise MetadataRewriteError(
            f"Metadata record {record_path.name} is not a JSON object", file_name=record_path.name
        )

    extension = find_media_extension(base_name, images_folder)
    data[link_field(extension)] = f"{scheme}://{root_cid}/{base_name}{extension}"

    target = record_path.with_name(base_name)
    try:
        target.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        record_path.unlink()
    except OSError as e:
        raise MetadataRewriteError(
            f"Failed to write {target.name}: {e}", file_name=record_path.name
        ) from e
    return target


class MetadataRewriter:
    """Points every metadata record at its media file inside an uploaded archive.

    Records are renamed from ``<base>.json`` to ``<base>`` as they are
    rewritten, so a second pass over the same folder finds nothing to do.
    """

    def __init__(
        self,
        broadcaster: Optional[ProgressBroadcaster] = None,
        scheme: str = "ipfs",
        error_policy: ErrorPolicy = ErrorPolicy.ABORT,
    ):
        self.broadcaster = broadcaster
        self.scheme = scheme
        self.error_policy = ErrorPolicy(error_policy)

    def _emit(self, session_id: Optional[str], **payload) -> None:
        if self.broadcaster and session_id:
            self.broadcaster.emit(session_id, ProgressStage.PROCESSING, file_type="metadata", **payload)

    async def rewrite(
        self,
        metadata_folder: Path,
        root_cid: str,
        session_id: Optional[str] = None,
    ) -> RewriteSummary:
        """Rewrite all records in ``metadata_folder`` to link into ``root_cid``.

        Media extensions are looked up in the sibling ``images`` folder.

        Raises:
            MetadataRewriteError: On the first bad record when the policy is ``abort``
        """
        metadata_folder = Path(metadata_folder)
        images_folder = metadata_folder.parent / "images"
        summary = RewriteSummary()

        if not metadata_folder.is_dir():
            logger.warning("Metadata folder missing", extra={"folder": str(metadata_folder)})
            return summary

        records = sorted(
            p for p in metadata_folder.iterdir() if p.is_file() and p.name.endswith(RECORD_SUFFIX)
        )
        total = len(records)

        for index, record_path in enumerate(records, start=1):
            try:
                target = await asyncio.to_thread(
                    rewrite_record, record_path, root_cid, images_folder, self.scheme
                )
            except MetadataRewriteError as e:
                logger.error(
                    "Failed to update metadata file",
                    extra={"file_name": record_path.name, "error": str(e)},
                )
                if self.error_policy is ErrorPolicy.ABORT:
                    if self.broadcaster and session_id:
                        self.broadcaster.emit_error(session_id, e, file_type="metadata")
                    raise
                summary.failed[record_path.name] = str(e)
                self._emit(session_id, file=record_path.name, status="skipped", processed=index, total=total)
                continue

            summary.rewritten.append(target.name)
            logger.debug("Updated metadata file", extra={"file_name": record_path.name})
            self._emit(session_id, file=record_path.name, status="updated", processed=index, total=total)

        logger.info(
            "Metadata records rewritten",
            extra={
                "folder": str(metadata_folder),
                "rewritten": len(summary.rewritten),
                "failed": len(summary.failed),
            },
        )
        self._emit(
            session_id,
            status="done",
            processed=len(summary.rewritten),
            failed=len(summary.failed),
            total=total,
        )
        return summary
