from pastebin.domain.enums import FileRole
from pastebin.domain.errors import ValidationError

MAX_NAME_BYTES = 128

_ROLES = {
    "file": FileRole.file,
    "f": FileRole.file,
    "name": FileRole.name,
    "n": FileRole.name,
}


def parse_part_name(field_name: str) -> tuple[FileRole, int]:
    """Split a form field name like "file:2" or "n:0" into role and index."""

    role, sep, index = field_name.partition(":")
    if not sep or role not in _ROLES or not (index.isascii() and index.isdigit()):
        raise ValidationError("invalid_part_name", f"Invalid part name: {field_name!r}")
    return _ROLES[role], int(index)


def decode_name(raw: bytes) -> str:
    if len(raw) > MAX_NAME_BYTES:
        raise ValidationError("name_too_long", f"File names are limited to {MAX_NAME_BYTES} bytes")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("invalid_name", "File names must be UTF-8") from e
