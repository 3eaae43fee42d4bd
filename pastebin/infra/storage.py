import base64
import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from pastebin.domain.errors import NotFoundError, StorageError
from pastebin.infra.sniff import SNIFF_LEN, detect_content_type, guess_from_name, normalize_mime

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Unpadded URL-safe base64 of a 32-byte SHA-256 digest.
_DIGEST_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")


def digest_name(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@dataclass
class BlobHandle:
    stream: BinaryIO
    mime_type: str
    size: int


class BlobWriter:
    """Stages one upload in a private temp file while hashing it.

    Nothing is visible under a blob name until `commit()` renames the staged
    file into place. `abort()` discards the staged file.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._hash = hashlib.sha256()
        self.size = 0
        try:
            fd, tmp = tempfile.mkstemp(dir=root, prefix="upload-")
        except OSError as e:
            raise StorageError("storage_failure", f"cannot stage upload: {e}") from e
        self._tmp = Path(tmp)
        self._file: BinaryIO | None = os.fdopen(fd, "wb")

    def write(self, chunk: bytes) -> None:
        if self._file is None:
            raise StorageError("storage_failure", "write to a closed blob writer")
        try:
            self._file.write(chunk)
        except OSError as e:
            self.abort()
            raise StorageError("storage_failure", f"write failed: {e}") from e
        self._hash.update(chunk)
        self.size += len(chunk)

    def commit(self) -> str:
        if self._file is None:
            raise StorageError("storage_failure", "commit of a closed blob writer")
        name = digest_name(self._hash.digest())
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
            self._file = None
            # Same digest means same bytes, so replacing an existing blob is harmless.
            os.replace(self._tmp, self._root / name)
        except OSError as e:
            self.abort()
            raise StorageError("storage_failure", f"commit failed: {e}") from e
        logger.debug("Stored blob %s (%d bytes)", name, self.size)
        return name

    def abort(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        self._tmp.unlink(missing_ok=True)


class BlobStore:
    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def open_writer(self) -> BlobWriter:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("storage_failure", f"cannot create {self._root}: {e}") from e
        return BlobWriter(self._root)

    def store(self, stream: BinaryIO) -> str:
        writer = self.open_writer()
        try:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                writer.write(chunk)
        except OSError as e:
            writer.abort()
            raise StorageError("storage_failure", f"read failed: {e}") from e
        except BaseException:
            writer.abort()
            raise
        return writer.commit()

    def path_for(self, digest: str) -> Path:
        if not _DIGEST_RE.match(digest):
            raise NotFoundError("blob_not_found", f"Invalid blob digest: {digest!r}")
        return self._root / digest

    def exists(self, digest: str) -> bool:
        try:
            return self.path_for(digest).is_file()
        except NotFoundError:
            return False

    def read(self, digest: str, name: str = "") -> BlobHandle:
        """Open a blob and work out its MIME type.

        The display name's extension is tried first, then the leading bytes.
        Any text/* type comes back as plain "text/plain".
        """

        path = self.path_for(digest)
        try:
            f = path.open("rb")
        except FileNotFoundError as e:
            raise NotFoundError("blob_not_found", f"Blob not found: {digest}") from e
        except OSError as e:
            raise StorageError("storage_failure", f"cannot open blob {digest}: {e}") from e

        try:
            size = os.fstat(f.fileno()).st_size
            mime = guess_from_name(name)
            if mime is None:
                mime = detect_content_type(f.read(SNIFF_LEN))
                f.seek(0)
        except OSError as e:
            f.close()
            raise StorageError("storage_failure", f"cannot read blob {digest}: {e}") from e
        return BlobHandle(stream=f, mime_type=normalize_mime(mime), size=size)
