import base64
import logging
import secrets
import struct
import threading
import time
from collections.abc import Callable
from typing import Protocol

from pastebin.config import AppConfig
from pastebin.domain.enums import IdAllocatorKind
from pastebin.domain.errors import StorageError

logger = logging.getLogger(__name__)


class IdAllocator(Protocol):
    def allocate(self) -> str: ...


def encode_id(value: int) -> str:
    """4 bytes little-endian, URL-safe base64 without padding (6 chars)."""

    raw = struct.pack("<I", value & 0xFFFFFFFF)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_id(paste_id: str) -> int:
    raw = base64.urlsafe_b64decode(paste_id + "==")
    return struct.unpack("<I", raw)[0]


class TickIdAllocator:
    """Hands out one id per tick, derived from the Unix time of that tick.

    Callers queue on a lock; each one waits for the next tick before
    reading the clock, so a single instance never issues the same value
    twice. If the wall clock did not move forward (or went backwards)
    the previous value plus one is used instead.
    """

    def __init__(
        self,
        interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._interval = interval
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_tick: float | None = None
        self._last: int | None = None

    def allocate(self) -> str:
        with self._lock:
            now = self._monotonic()
            if self._next_tick is not None and now < self._next_tick:
                self._sleep(self._next_tick - now)
                now = max(self._monotonic(), self._next_tick)
            self._next_tick = now + self._interval

            value = int(self._clock()) & 0xFFFFFFFF
            if self._last is not None and value <= self._last:
                value = (self._last + 1) & 0xFFFFFFFF
            self._last = value
            return encode_id(value)


class RandomIdAllocator:
    """Random 4-byte ids, checked against existing pastes.

    The check is advisory: the repository's primary key is the real
    guard, and callers retry when an insert reports a conflict.
    """

    def __init__(
        self,
        exists: Callable[[str], bool],
        max_attempts: int = 8,
        token_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self._exists = exists
        self._max_attempts = max_attempts
        self._token_bytes = token_bytes

    def allocate(self) -> str:
        for _ in range(self._max_attempts):
            candidate = base64.urlsafe_b64encode(self._token_bytes(4)).decode("ascii").rstrip("=")
            if not self._exists(candidate):
                return candidate
            logger.debug("Paste id %s already taken, retrying", candidate)
        raise StorageError("id_space_exhausted", "Could not find a free paste id")


def build_allocator(cfg: AppConfig, exists: Callable[[str], bool]) -> IdAllocator:
    if cfg.id_allocator == IdAllocatorKind.random:
        return RandomIdAllocator(exists)
    return TickIdAllocator(cfg.id_tick_seconds)
