import io
from pathlib import Path

import pytest

from pastebin.domain.errors import NotFoundError, StorageError
from pastebin.infra.storage import BlobStore

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def test_store_is_idempotent(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)

    d1 = store.store(io.BytesIO(b"hello"))
    d2 = store.store(io.BytesIO(b"hello"))

    assert d1 == d2
    assert len(d1) == 43
    assert [p.name for p in tmp_path.iterdir()] == [d1]


def test_store_then_read_round_trips(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    payload = bytes(range(256)) * 1000

    digest = store.store(io.BytesIO(payload))
    blob = store.read(digest)
    with blob.stream:
        assert blob.stream.read() == payload
    assert blob.size == len(payload)


def test_digest_is_unpadded_urlsafe_sha256(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    # sha256("abc") in URL-safe base64 without padding
    assert store.store(io.BytesIO(b"abc")) == "ungWv48Bz-pBQUDeXa4iI7ADYaOWF3qctBD_YfIAFa0"


def test_read_collapses_text_types(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    digest = store.store(io.BytesIO(b"<html><body>hi</body></html>"))

    assert store.read(digest).mime_type == "text/plain"
    assert store.read(digest, "page.html").mime_type == "text/plain"
    assert store.read(digest, "script.py").mime_type == "text/plain"


def test_read_prefers_name_over_content(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    digest = store.store(io.BytesIO(b"plain words"))

    assert store.read(digest, "picture.png").mime_type == "image/png"


def test_read_sniffs_without_name(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    digest = store.store(io.BytesIO(PNG))

    blob = store.read(digest)
    with blob.stream:
        assert blob.mime_type == "image/png"
        # Sniffing must not consume the stream.
        assert blob.stream.read() == PNG


def test_read_unknown_digest(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    with pytest.raises(NotFoundError):
        store.read("A" * 43)
    with pytest.raises(NotFoundError):
        store.read("../../etc/passwd")


class _BrokenStream:
    def __init__(self) -> None:
        self.calls = 0

    def read(self, size: int = -1) -> bytes:
        self.calls += 1
        if self.calls > 1:
            raise OSError("connection reset")
        return b"partial data"


def test_failed_store_leaves_nothing_behind(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    with pytest.raises(StorageError):
        store.store(_BrokenStream())
    assert list(tmp_path.iterdir()) == []


def test_aborted_writer_removes_staged_file(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    writer = store.open_writer()
    writer.write(b"data")
    assert len(list(tmp_path.iterdir())) == 1

    writer.abort()
    assert list(tmp_path.iterdir()) == []
    assert not store.exists("A" * 43)
