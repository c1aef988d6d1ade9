"""Filesystem-backed blob store for portal uploads.

Objects live under ``<base_path>/<bucket>/<path>`` and are served from
``<public_base_url>/<bucket>/<path>``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from portlio_core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: str) -> str:
    """Reduce *filename* to a safe single path component."""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_NAME_RE.sub("_", name).strip("._")
    return name or "file"


def _resolve_safe_path(root: Path, relative: str) -> Path:
    """Join *relative* onto *root*, refusing paths that escape it.

    Raises
    ------
    ValueError
        If the resolved path is outside *root*.
    """
    root_resolved = root.resolve()
    full_path = (root_resolved / relative.lstrip("/")).resolve()
    if full_path != root_resolved and root_resolved not in full_path.parents:
        raise ValueError("Path traversal detected")
    return full_path


@dataclass(frozen=True)
class BlobEntry:
    """One stored object as returned by :meth:`LocalBlobStore.list_objects`."""

    name: str
    path: str
    size: int
    public_url: str
    updated_at: datetime


class LocalBlobStore:
    """Write and list portal uploads on the local filesystem.

    Parameters
    ----------
    base_path:
        Root directory holding all buckets.
    public_base_url:
        URL prefix under which the root directory is served.
    bucket:
        Bucket name for portal uploads.
    """

    def __init__(self, base_path: str | Path, public_base_url: str, bucket: str) -> None:
        self._root = Path(base_path) / bucket
        self._public_base_url = public_base_url.rstrip("/")
        self.bucket = bucket

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{self.bucket}/{path.lstrip('/')}"

    async def put_object(self, path: str, data: bytes) -> str:
        """Store *data* at *path* and return its public URL.

        Raises
        ------
        ValueError
            If *path* escapes the bucket.
        ExternalServiceError
            If the write fails.
        """
        target = _resolve_safe_path(self._root, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("Blob write failed for %s/%s: %s", self.bucket, path, exc)
            raise ExternalServiceError("blob_store", "Upload failed") from exc

        logger.info("Stored blob %s/%s (%d bytes)", self.bucket, path, len(data))
        return self.public_url(path)

    async def list_objects(self, prefix: str) -> list[BlobEntry]:
        """List every object below *prefix*, newest first."""
        directory = _resolve_safe_path(self._root, prefix)

        def _scan() -> list[BlobEntry]:
            if not directory.is_dir():
                return []
            entries: list[BlobEntry] = []
            root = self._root.resolve()
            for item in directory.rglob("*"):
                if not item.is_file():
                    continue
                stat = item.stat()
                relative = item.relative_to(root).as_posix()
                entries.append(
                    BlobEntry(
                        name=item.name,
                        path=relative,
                        size=stat.st_size,
                        public_url=self.public_url(relative),
                        updated_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                    )
                )
            entries.sort(key=lambda e: (e.updated_at, e.path), reverse=True)
            return entries

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            logger.error("Blob listing failed for %s/%s: %s", self.bucket, prefix, exc)
            raise ExternalServiceError("blob_store", "Listing failed") from exc
