"""Filesystem-backed artifact store.

Objects are addressed by relative POSIX keys such as
``builds/<job_id>/kernel.config``. Object bytes live under ``objects/`` and
a JSON sidecar with the content type and custom metadata lives under
``meta/``. Writes go to a temporary file first and are moved into place
only on success, so readers never observe a partial object.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "builds"
IMAGE_FILENAME = "output.iso"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Chunk size for streaming reads
READ_CHUNK_SIZE = 64 * 1024  # 64KB


class ArtifactStoreError(Exception):
    """Raised when the artifact store cannot complete an operation."""

    def __init__(self, message: str, code: str = "artifact_store_error") -> None:
        super().__init__(message)
        self.code = code


class ArtifactNotFoundError(ArtifactStoreError):
    """Raised when a requested object does not exist."""

    def __init__(self, key: str, code: str = "artifact_not_found") -> None:
        super().__init__(f"Artifact not found: {key}", code=code)
        self.key = key


@dataclass(frozen=True)
class ObjectInfo:
    """Presence information for a stored object."""

    key: str
    size: int
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)


class ObjectWriter:
    """Streaming sink handed out by ``ArtifactStore.writer``."""

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj
        self._sha256 = hashlib.sha256()
        self.size = 0

    def write(self, chunk: bytes) -> None:
        """Append a chunk to the pending object."""
        self._file.write(chunk)
        self._sha256.update(chunk)
        self.size += len(chunk)

    @property
    def sha256(self) -> str:
        """SHA-256 of the bytes written so far."""
        return self._sha256.hexdigest()


def job_prefix(job_id: str) -> str:
    """Artifact store prefix for a job."""
    return f"{STORAGE_PREFIX}/{job_id}"


def artifact_key(job_id: str, filename: str) -> str:
    """Artifact store key for one file of a job."""
    return f"{job_prefix(job_id)}/{filename}"


def image_key(job_id: str) -> str:
    """Artifact store key of a job's final image."""
    return artifact_key(job_id, IMAGE_FILENAME)


class ArtifactStore:
    """Blob store rooted at a local directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"ArtifactStore(root={str(self.root)!r})"

    def _validate_key(self, key: str) -> PurePosixPath:
        path = PurePosixPath(key)
        if not key or path.is_absolute() or ".." in path.parts or "\\" in key:
            raise ArtifactStoreError(
                f"Invalid artifact key: {key!r}", code="invalid_key"
            )
        return path

    def _object_path(self, key: str) -> Path:
        return self.root / "objects" / Path(*self._validate_key(key).parts)

    def _meta_path(self, key: str) -> Path:
        parts = self._validate_key(key).parts
        return self.root / "meta" / Path(*parts[:-1]) / f"{parts[-1]}.json"

    def _write_meta(
        self, key: str, content_type: str, metadata: dict[str, str] | None
    ) -> None:
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"content_type": content_type, "metadata": dict(metadata or {})}
        fd, tmp_name = tempfile.mkstemp(dir=meta_path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, sort_keys=True)
            os.replace(tmp_name, meta_path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @contextmanager
    def writer(
        self,
        key: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
    ) -> Iterator[ObjectWriter]:
        """Stream an object into the store.

        The object becomes visible only when the block exits normally; an
        exception discards everything written.

        Args:
            key: Object key.
            content_type: MIME type recorded with the object.
            metadata: Custom string metadata.

        Yields:
            ObjectWriter accepting byte chunks.

        Raises:
            ArtifactStoreError: If the object cannot be written.
        """
        obj_path = self._object_path(key)
        try:
            obj_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=obj_path.parent, suffix=".tmp")
        except OSError as e:
            raise ArtifactStoreError(f"Cannot write {key}: {e}") from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                sink = ObjectWriter(f)
                yield sink
            self._write_meta(key, content_type, metadata)
            os.replace(tmp_path, obj_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ArtifactStoreError(f"Cannot write {key}: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Stored %s (%d bytes)", key, sink.size)

    def put_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
    ) -> ObjectInfo:
        """Store a complete object."""
        with self.writer(key, content_type, metadata) as w:
            w.write(data)
        return ObjectInfo(key, len(data), content_type, dict(metadata or {}))

    def put_text(
        self,
        key: str,
        text: str,
        content_type: str = "text/plain",
        metadata: dict[str, str] | None = None,
    ) -> ObjectInfo:
        """Store UTF-8 text."""
        return self.put_bytes(key, text.encode("utf-8"), content_type, metadata)

    def head(self, key: str) -> ObjectInfo | None:
        """Return presence information, or None if the object is absent."""
        obj_path = self._object_path(key)
        try:
            size = obj_path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ArtifactStoreError(f"Cannot stat {key}: {e}") from e

        content_type = DEFAULT_CONTENT_TYPE
        metadata: dict[str, str] = {}
        try:
            with self._meta_path(key).open("r", encoding="utf-8") as f:
                payload = json.load(f)
            content_type = payload.get("content_type", content_type)
            metadata = dict(payload.get("metadata") or {})
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable metadata for %s: %s", key, e)
        return ObjectInfo(key, size, content_type, metadata)

    def exists(self, key: str) -> bool:
        """Whether an object is stored under ``key``."""
        return self._object_path(key).is_file()

    def get_bytes(self, key: str) -> bytes:
        """Read a complete object.

        Raises:
            ArtifactNotFoundError: If the object is absent.
        """
        try:
            return self._object_path(key).read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFoundError(key) from None
        except OSError as e:
            raise ArtifactStoreError(f"Cannot read {key}: {e}") from e

    def get_text(self, key: str) -> str:
        """Read a UTF-8 text object."""
        return self.get_bytes(key).decode("utf-8")

    def iter_bytes(self, key: str, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        """Stream an object in chunks.

        The object is opened eagerly so a missing key raises before the
        first chunk is requested.

        Raises:
            ArtifactNotFoundError: If the object is absent.
        """
        try:
            f = self._object_path(key).open("rb")
        except FileNotFoundError:
            raise ArtifactNotFoundError(key) from None
        except OSError as e:
            raise ArtifactStoreError(f"Cannot read {key}: {e}") from e
        return _iter_file(f, chunk_size)

    def delete(self, key: str) -> bool:
        """Remove an object and its metadata.

        Returns:
            True if an object was removed.
        """
        obj_path = self._object_path(key)
        existed = obj_path.is_file()
        obj_path.unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)
        return existed


def _iter_file(f: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with f:
        while chunk := f.read(chunk_size):
            yield chunk


__all__ = [
    "IMAGE_FILENAME",
    "STORAGE_PREFIX",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "ArtifactStoreError",
    "ObjectInfo",
    "ObjectWriter",
    "artifact_key",
    "image_key",
    "job_prefix",
]
