import mimetypes
from collections.abc import Iterable

import filetype

SNIFF_LEN = 512

TEXT_PLAIN = "text/plain"
TEXT_UTF8 = "text/plain; charset=utf-8"
OCTET_STREAM = "application/octet-stream"

_HTML_TAGS = (
    b"<!DOCTYPE HTML",
    b"<HTML",
    b"<HEAD",
    b"<SCRIPT",
    b"<IFRAME",
    b"<H1",
    b"<DIV",
    b"<FONT",
    b"<TABLE",
    b"<A",
    b"<STYLE",
    b"<TITLE",
    b"<B",
    b"<BODY",
    b"<BR",
    b"<P",
    b"<!--",
)

_PREFIXES = (
    (b"<?xml", "text/xml; charset=utf-8"),
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", TEXT_UTF8),
)

# Control bytes that never show up in text.
_BINARY = (
    frozenset(range(0x00, 0x09)) | {0x0B} | frozenset(range(0x0E, 0x1B)) | frozenset(range(0x1C, 0x20))
)

_PREFERRED_EXT = {
    "text/plain": ".txt",
    "text/html": ".html",
    "text/xml": ".xml",
    "image/jpeg": ".jpg",
    "application/octet-stream": "",
}


def _is_html(head: bytes) -> bool:
    body = head.lstrip(b"\t\n\x0c\r ")
    for tag in _HTML_TAGS:
        if len(body) <= len(tag):
            continue
        if body[: len(tag)].upper() == tag and body[len(tag)] in b" >":
            return True
    return False


def detect_content_type(head: bytes) -> str:
    """Guess a MIME type from the first bytes of a file.

    Only the first SNIFF_LEN bytes are considered. Markup and document
    prefixes win, then binary signatures, then a text/binary split on
    control bytes.
    """

    head = bytes(head[:SNIFF_LEN])
    if not head:
        return TEXT_UTF8
    if _is_html(head):
        return "text/html; charset=utf-8"
    stripped = head.lstrip(b"\t\n\x0c\r ")
    for prefix, mime in _PREFIXES:
        if (stripped if prefix == b"<?xml" else head).startswith(prefix):
            return mime
    guessed = filetype.guess_mime(head)
    if guessed:
        return guessed
    if any(b in _BINARY for b in head):
        return OCTET_STREAM
    return TEXT_UTF8


def essence(mime: str) -> str:
    return mime.split(";", 1)[0].strip().lower()


def normalize_mime(mime: str) -> str:
    """Collapse every text/* type to the one canonical text type."""

    if essence(mime).startswith("text/"):
        return TEXT_PLAIN
    return mime


def extension_for(mime: str) -> str:
    base = essence(mime)
    if base in _PREFERRED_EXT:
        return _PREFERRED_EXT[base]
    return mimetypes.guess_extension(base) or ""


def guess_from_name(name: str) -> str | None:
    if not name:
        return None
    mime, _ = mimetypes.guess_type(name, strict=False)
    return mime


class ContentTypeFilter:
    """Allow-list or deny-list over MIME essences (parameters ignored)."""

    def __init__(self, types: Iterable[str] = (), allow: bool = False) -> None:
        self._types = frozenset(essence(t) for t in types)
        self._allow = allow

    def permits(self, mime: str) -> bool:
        listed = essence(mime) in self._types
        return listed if self._allow else not listed
