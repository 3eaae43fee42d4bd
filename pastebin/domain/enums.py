from enum import Enum


class FileRole(str, Enum):
    file = "file"
    name = "name"


class IdAllocatorKind(str, Enum):
    tick = "tick"
    random = "random"
