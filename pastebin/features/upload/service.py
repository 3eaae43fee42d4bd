import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import PurePosixPath, PureWindowsPath

from fastapi.concurrency import run_in_threadpool
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from pastebin.domain.enums import FileRole
from pastebin.domain.errors import (
    ConflictError,
    PolicyError,
    StorageError,
    ValidationError,
)
from pastebin.features.ids.allocator import IdAllocator
from pastebin.features.upload.parts import MAX_NAME_BYTES, decode_name, parse_part_name
from pastebin.infra.repo_pastes import Paste, PasteFile, PasteRepo
from pastebin.infra.sniff import SNIFF_LEN, ContentTypeFilter, detect_content_type, extension_for
from pastebin.infra.storage import BlobStore, BlobWriter

logger = logging.getLogger(__name__)

ID_ATTEMPTS = 5


@dataclass(frozen=True)
class StoredFile:
    digest: str
    content_type: str
    filename: str | None


@dataclass
class _Part:
    headers: dict[str, bytes] = field(default_factory=dict)
    header_field: bytes = b""
    header_value: bytes = b""
    role: FileRole | None = None
    index: int = -1
    filename: str | None = None
    head: bytearray = field(default_factory=bytearray)
    content_type: str | None = None
    writer: BlobWriter | None = None


def _client_filename(raw: bytes | None) -> str | None:
    if not raw:
        return None
    name = raw.decode("utf-8", errors="replace")
    # Browsers may send a full path; keep only the last component.
    name = PureWindowsPath(PurePosixPath(name).name).name
    if not name or len(name.encode("utf-8")) > MAX_NAME_BYTES:
        return None
    return name


class _UploadSession:
    """Per-request state fed with the events of one multipart body."""

    def __init__(self, blobs: BlobStore, content_filter: ContentTypeFilter) -> None:
        self._blobs = blobs
        self._filter = content_filter
        self.files: dict[int, StoredFile] = {}
        self.names: dict[int, str] = {}
        self.part: _Part | None = None
        self.finished = False

    def feed(self, events: list[tuple[str, bytes]]) -> None:
        for kind, data in events:
            if kind == "part_begin":
                self.part = _Part()
            elif kind == "header_field":
                self.part.header_field += data
            elif kind == "header_value":
                self.part.header_value += data
            elif kind == "header_end":
                key = self.part.header_field.decode("latin-1").lower()
                self.part.headers[key] = self.part.header_value
                self.part.header_field = b""
                self.part.header_value = b""
            elif kind == "headers_finished":
                self._begin_part(self.part)
            elif kind == "part_data":
                self._part_data(self.part, data)
            elif kind == "part_end":
                self._end_part(self.part)
                self.part = None
            elif kind == "end":
                self.finished = True
        events.clear()

    def _client_names(self, skip: int) -> set[str]:
        """Client filenames still in use as display names."""

        return {
            f.filename
            for i, f in self.files.items()
            if f.filename is not None and i != skip and i not in self.names
        }

    def abort(self) -> None:
        if self.part is not None and self.part.writer is not None:
            self.part.writer.abort()
            self.part.writer = None

    def _begin_part(self, part: _Part) -> None:
        disposition = part.headers.get("content-disposition")
        if disposition is None:
            raise ValidationError("malformed_multipart", "Part without Content-Disposition")
        _, options = parse_options_header(disposition)
        field_name = options.get(b"name")
        if field_name is None:
            raise ValidationError("malformed_multipart", "Part without a field name")
        part.role, part.index = parse_part_name(field_name.decode("utf-8", errors="replace"))
        if part.role == FileRole.file:
            if part.index in self.files:
                raise ValidationError("duplicate_index", f"Duplicate file index {part.index}")
            part.filename = _client_filename(options.get(b"filename"))
        elif part.index in self.names:
            raise ValidationError("duplicate_index", f"Duplicate name index {part.index}")

    def _part_data(self, part: _Part, data: bytes) -> None:
        if part.role == FileRole.name:
            part.head += data
            if len(part.head) > MAX_NAME_BYTES:
                raise ValidationError(
                    "name_too_long", f"File names are limited to {MAX_NAME_BYTES} bytes"
                )
            return
        if part.writer is not None:
            part.writer.write(data)
            return
        part.head += data
        if len(part.head) >= SNIFF_LEN:
            self._open_writer(part)

    def _open_writer(self, part: _Part) -> None:
        # The type check happens before a single byte reaches the blob store.
        part.content_type = detect_content_type(bytes(part.head[:SNIFF_LEN]))
        if not self._filter.permits(part.content_type):
            logger.info("Rejected file %d with content type %s", part.index, part.content_type)
            raise PolicyError(
                "content_type_not_allowed", f"Content type not allowed: {part.content_type}"
            )
        part.writer = self._blobs.open_writer()
        part.writer.write(bytes(part.head))
        part.head.clear()

    def _end_part(self, part: _Part) -> None:
        if part.role == FileRole.name:
            name = decode_name(bytes(part.head))
            if name in self.names.values() or name in self._client_names(part.index):
                raise ValidationError("duplicate_name", f"Duplicate file name {name!r}")
            self.names[part.index] = name
            return
        if part.writer is None:
            self._open_writer(part)
        writer, part.writer = part.writer, None
        digest = writer.commit()
        self.files[part.index] = StoredFile(
            digest=digest, content_type=part.content_type or "", filename=part.filename
        )


def _callbacks(events: list[tuple[str, bytes]]) -> dict:
    def data_cb(kind: str):
        def cb(data: bytes, start: int, end: int) -> None:
            events.append((kind, bytes(data[start:end])))

        return cb

    def notify_cb(kind: str):
        def cb() -> None:
            events.append((kind, b""))

        return cb

    return {
        "on_part_begin": notify_cb("part_begin"),
        "on_part_data": data_cb("part_data"),
        "on_part_end": notify_cb("part_end"),
        "on_header_field": data_cb("header_field"),
        "on_header_value": data_cb("header_value"),
        "on_header_end": notify_cb("header_end"),
        "on_headers_finished": notify_cb("headers_finished"),
        "on_end": notify_cb("end"),
    }


def _boundary(content_type: str) -> bytes:
    ctype, options = parse_options_header(content_type)
    boundary = options.get(b"boundary")
    if ctype != b"multipart/form-data" or not boundary:
        raise ValidationError("malformed_multipart", "Expected a multipart/form-data body")
    return boundary


def assemble_files(files: dict[int, StoredFile], names: dict[int, str]) -> tuple[PasteFile, ...]:
    """Order files by index and give every file a display name.

    An explicit name part wins, then the client filename. Otherwise a sole
    file gets an empty name and several files get their index, both with
    an extension guessed from the content type. Display names must be unique within the paste.
    """

    if not files:
        raise ValidationError("no_files", "Upload contained no files")
    sole = len(files) == 1
    out: list[PasteFile] = []
    seen: set[str] = set()
    for index in sorted(files):
        stored = files[index]
        if index in names:
            name = names[index]
        elif stored.filename is not None:
            name = stored.filename
        else:
            name = ("" if sole else str(index)) + extension_for(stored.content_type)
        if name in seen:
            raise ValidationError("duplicate_name", f"Duplicate file name {name!r}")
        seen.add(name)
        out.append(PasteFile(hash=stored.digest, name=name))
    return tuple(out)


class UploadService:
    def __init__(
        self,
        *,
        blobs: BlobStore,
        pastes: PasteRepo,
        allocator: IdAllocator,
        content_filter: ContentTypeFilter,
        max_body_size: int,
    ) -> None:
        self._blobs = blobs
        self._pastes = pastes
        self._allocator = allocator
        self._filter = content_filter
        self._max_body_size = max_body_size

    async def ingest(
        self, *, owner: str, content_type: str, chunks: AsyncIterator[bytes]
    ) -> Paste:
        session = await self._read_parts(content_type, chunks)
        files = assemble_files(session.files, session.names)
        return await self._commit(owner, files)

    async def _read_parts(self, content_type: str, chunks: AsyncIterator[bytes]) -> _UploadSession:
        events: list[tuple[str, bytes]] = []
        parser = MultipartParser(_boundary(content_type), _callbacks(events))
        session = _UploadSession(self._blobs, self._filter)
        received = 0
        try:
            async for chunk in chunks:
                received += len(chunk)
                if received > self._max_body_size:
                    raise ValidationError(
                        "body_too_large", f"Request body exceeds {self._max_body_size} bytes"
                    )
                try:
                    parser.write(chunk)
                except MultipartParseError as e:
                    raise ValidationError("malformed_multipart", str(e)) from e
                # Blob writes and the fsync on commit stay off the event loop.
                await run_in_threadpool(session.feed, events)
            parser.finalize()
            await run_in_threadpool(session.feed, events)
        except BaseException:
            session.abort()
            raise
        if not session.finished:
            session.abort()
            raise ValidationError("malformed_multipart", "Multipart body ended early")
        return session

    async def _commit(self, owner: str, files: tuple[PasteFile, ...]) -> Paste:
        for _ in range(ID_ATTEMPTS):
            # The tick allocator blocks until its next tick.
            paste_id = await run_in_threadpool(self._allocator.allocate)
            try:
                paste = await run_in_threadpool(
                    self._pastes.put, Paste(id=paste_id, owner=owner, files=files)
                )
            except ConflictError:
                logger.warning("Paste id %s collided, allocating another", paste_id)
                continue
            logger.info("Created paste %s for %s with %d files", paste.id, owner, len(files))
            return paste
        raise StorageError("id_conflict", "Could not allocate a free paste id")
