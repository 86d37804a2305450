"""Tests for the filesystem artifact store."""

import hashlib

import pytest

from isoforge.builds.storage import (
    ArtifactNotFoundError,
    ArtifactStore,
    ArtifactStoreError,
    artifact_key,
    image_key,
    job_prefix,
)


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "store")


class TestKeys:
    """Test key helpers."""

    def test_key_layout(self) -> None:
        """Job artifacts live under builds/<job_id>/."""
        assert job_prefix("abc") == "builds/abc"
        assert artifact_key("abc", "build.sh") == "builds/abc/build.sh"
        assert image_key("abc") == "builds/abc/output.iso"

    @pytest.mark.parametrize(
        "key", ["", "/etc/passwd", "builds/../secret", "builds\\abc\\file"]
    )
    def test_invalid_keys(self, store: ArtifactStore, key: str) -> None:
        """Absolute, escaping and backslash keys are rejected."""
        with pytest.raises(ArtifactStoreError) as exc_info:
            store.put_text(key, "x")
        assert exc_info.value.code == "invalid_key"


class TestReadWrite:
    """Test storing and reading objects."""

    def test_put_and_get_text(self, store: ArtifactStore) -> None:
        """Text round-trips with its content type and metadata."""
        info = store.put_text(
            "builds/a/manifest.json", "{}", "application/json", {"origin": "test"}
        )

        assert info.size == 2
        assert store.get_text("builds/a/manifest.json") == "{}"
        head = store.head("builds/a/manifest.json")
        assert head is not None
        assert head.content_type == "application/json"
        assert head.metadata == {"origin": "test"}

    def test_overwrite(self, store: ArtifactStore) -> None:
        """A second write replaces the object."""
        store.put_text("k/file", "one")
        store.put_text("k/file", "two")
        assert store.get_text("k/file") == "two"

    def test_missing(self, store: ArtifactStore) -> None:
        """Missing objects report absence or raise ArtifactNotFoundError."""
        assert store.head("k/missing") is None
        assert not store.exists("k/missing")
        with pytest.raises(ArtifactNotFoundError) as exc_info:
            store.get_bytes("k/missing")
        assert exc_info.value.code == "artifact_not_found"
        with pytest.raises(ArtifactNotFoundError):
            store.iter_bytes("k/missing")

    def test_delete(self, store: ArtifactStore) -> None:
        """Delete removes the object and reports whether it existed."""
        store.put_text("k/file", "x")
        assert store.delete("k/file") is True
        assert store.delete("k/file") is False
        assert store.head("k/file") is None


class TestStreaming:
    """Test streamed writes and reads."""

    def test_writer_hashes_and_counts(self, store: ArtifactStore) -> None:
        """The writer tracks size and SHA-256 of streamed chunks."""
        chunks = [b"a" * 1000, b"b" * 500, b"c"]
        with store.writer("builds/j/output.iso", metadata={"sha256": "x"}) as sink:
            for chunk in chunks:
                sink.write(chunk)

        data = b"".join(chunks)
        assert sink.size == len(data)
        assert sink.sha256 == hashlib.sha256(data).hexdigest()
        assert b"".join(store.iter_bytes("builds/j/output.iso", chunk_size=256)) == data
        info = store.head("builds/j/output.iso")
        assert info is not None
        assert info.size == len(data)
        assert info.content_type == "application/octet-stream"

    def test_failed_write_leaves_nothing(self, store: ArtifactStore) -> None:
        """An exception inside the writer discards the partial object."""
        with pytest.raises(RuntimeError):
            with store.writer("builds/j/output.iso") as sink:
                sink.write(b"partial")
                raise RuntimeError("connection dropped")

        assert store.head("builds/j/output.iso") is None
        leftovers = list((store.root / "objects").rglob("*.tmp"))
        assert leftovers == []

    def test_failed_write_keeps_previous_object(self, store: ArtifactStore) -> None:
        """A failed overwrite leaves the earlier object in place."""
        store.put_bytes("builds/j/output.iso", b"good")
        with pytest.raises(RuntimeError):
            with store.writer("builds/j/output.iso") as sink:
                sink.write(b"bad")
                raise RuntimeError("abort")

        assert store.get_bytes("builds/j/output.iso") == b"good"
